"""
Breadth-first pointer path expansion over a memory snapshot.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Tuple

from tqdm import tqdm

DEFAULT_MAX_OFFSET = 0x400


@dataclass(frozen=True)
class PointerStep:
    address: int
    offset: int


PointerPath = Tuple[PointerStep, ...]


@dataclass
class LevelResult:
    level: int
    paths: List[PointerPath] = field(default_factory=list)
    discarded: List[PointerPath] = field(default_factory=list)
    found: List[PointerPath] = field(default_factory=list)


def seed_frontier(target: int) -> List[PointerPath]:
    return [(PointerStep(target, 0),)]


def expand_path(
    snapshot: Any,
    path: PointerPath,
    max_offset: int,
    on_probe: Optional[Callable[[int, int], None]] = None,
) -> Optional[List[PointerPath]]:
    """Prepend one step per storage location pointing near the path head.

    Returns None when no location is found within ``max_offset``.
    """
    hit = snapshot.find_offset(path[0].address, max_offset, on_probe)
    if hit is None:
        return None
    offset, addresses = hit
    return [(PointerStep(address, offset),) + path for address in addresses]


def search_next_level(
    snapshot: Any,
    frontier: List[PointerPath],
    max_offset: int,
    *,
    level: int = 1,
    progress: bool = False,
    on_probe: Optional[Callable[[int, int], None]] = None,
) -> Tuple[List[PointerPath], List[PointerPath]]:
    """Expand every frontier path; return (new frontier, discarded paths)."""
    expanded: List[PointerPath] = []
    discarded: List[PointerPath] = []
    for path in tqdm(frontier, desc=f"Level {level}", unit="path", disable=not progress):
        new_paths = expand_path(snapshot, path, max_offset, on_probe)
        if new_paths is None:
            discarded.append(path)
            continue
        expanded.extend(new_paths)
    return expanded, discarded


def iter_levels(
    snapshot: Any,
    target: int,
    max_offset: int = DEFAULT_MAX_OFFSET,
    *,
    max_depth: int = 0,
    stop_on_found: bool = False,
    progress: bool = False,
    on_probe: Optional[Callable[[int, int], None]] = None,
) -> Iterator[LevelResult]:
    """Yield one LevelResult per level until a stop condition holds.

    ``max_depth`` of 0 keeps expanding until the frontier is empty or the
    caller stops iterating.
    """
    frontier = seed_frontier(target)
    level = 0
    while frontier:
        if max_depth and level >= max_depth:
            return
        level += 1
        frontier, discarded = search_next_level(
            snapshot,
            frontier,
            max_offset,
            level=level,
            progress=progress,
            on_probe=on_probe,
        )
        found = [path for path in frontier if snapshot.is_in_main_image(path[0].address)]
        yield LevelResult(level=level, paths=frontier, discarded=discarded, found=found)
        if stop_on_found and found:
            return


def resolve_path(snapshot: Any, path: PointerPath) -> int:
    """Follow ``path`` from its head through the snapshot and return the address reached."""
    address = path[0].address
    for step in path[:-1]:
        address = snapshot.value_at(address) + step.offset
    return address
