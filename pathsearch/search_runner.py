"""
Orchestration helpers that drive the level search and print its report.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from . import expander, utils
from .expander import PointerPath

DEFAULT_CONFIG = {
    "max_offset": expander.DEFAULT_MAX_OFFSET,
    "max_depth": 10,
    "stop_on_found": False,
    "chunk_size": 0x4000,
    "log_path": None,
}


def load_search_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Read overrides from a JSON file; nothing is read without a path."""
    data: Dict[str, Any] = {}
    if not path:
        return data
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = json.load(handle)
    except (OSError, ValueError) as exc:
        print(f"Failed to read {path}: {exc}")
        return data
    if isinstance(loaded, dict):
        data.update({key: value for key, value in loaded.items() if key in DEFAULT_CONFIG})
    else:
        print(f"Ignoring {path}: expected a JSON object.")
    return data


def _resolve(args: Any, name: str, config: Dict[str, Any]) -> Any:
    value = getattr(args, name, None)
    if value is not None:
        return value
    if config.get(name) is not None:
        return config[name]
    return DEFAULT_CONFIG[name]


def _as_int(name: str, value: Any) -> int:
    """Coerce a config value; strings may use 0x notation."""
    try:
        if isinstance(value, str):
            return int(value.strip(), 0)
        return int(value)
    except (TypeError, ValueError):
        print(f"Ignoring {name}={value!r}: expected an integer.")
        return DEFAULT_CONFIG[name]


def resolve_config(args: Any, config: Dict[str, Any]) -> Dict[str, Any]:
    """Merge command line values over file values over defaults."""
    resolved = {name: _resolve(args, name, config) for name in DEFAULT_CONFIG}
    resolved["max_offset"] = _as_int("max_offset", resolved["max_offset"])
    resolved["max_depth"] = max(0, _as_int("max_depth", resolved["max_depth"]))
    resolved["chunk_size"] = _as_int("chunk_size", resolved["chunk_size"])
    resolved["stop_on_found"] = bool(resolved["stop_on_found"])
    return resolved


def report_level(result: expander.LevelResult, modules: List[utils.ModuleInfo]) -> None:
    print(f"level {result.level}")
    for path in result.discarded:
        print(f"throwing away 0x{path[0].address:x}")
    for path in result.paths:
        print(utils.format_path(path))
    for path in result.found:
        print("FOUND POSSIBLE PATH:")
        print(utils.format_path(path))
        print(f"  {utils.format_static_path(path, modules)}")


def execute_search(
    snapshot: Any,
    target: int,
    config: Dict[str, Any],
    *,
    progress: bool = False,
    verbose: bool = False,
) -> List[PointerPath]:
    """Run levels until the termination policy stops; return every found path."""
    modules = snapshot.modules()
    log_path = config.get("log_path")
    max_depth = config["max_depth"]
    on_probe = None
    if verbose:
        def on_probe(offset: int, candidate: int) -> None:
            print(f"testing offset {offset:x}, addr {candidate:x}")

    print(
        f"Searching pointer paths to 0x{target:x} "
        f"(max offset 0x{config['max_offset']:x}, "
        f"max depth {max_depth or 'unbounded'}, stop on found={config['stop_on_found']})"
    )
    found: List[PointerPath] = []
    last_level = 0
    frontier_size = 1
    for result in expander.iter_levels(
        snapshot,
        target,
        config["max_offset"],
        max_depth=max_depth,
        stop_on_found=config["stop_on_found"],
        progress=progress,
        on_probe=on_probe,
    ):
        report_level(result, modules)
        found.extend(result.found)
        last_level = result.level
        frontier_size = len(result.paths)
        if log_path:
            utils.log_search_event(
                log_path,
                "level",
                level=result.level,
                paths=len(result.paths),
                discarded=len(result.discarded),
                found=len(result.found),
            )
            for path in result.found:
                utils.log_search_event(
                    log_path,
                    "found",
                    level=result.level,
                    head=f"0x{path[0].address:x}",
                    static=utils.format_static_path(path, modules),
                    path=utils.format_path(path),
                )

    if frontier_size == 0:
        reason = "frontier exhausted"
    elif config["stop_on_found"] and found:
        reason = "possible path found"
    else:
        reason = "maximum depth reached"
    print(f"Search stopped after {last_level} level(s): {reason}; {len(found)} possible path(s).")
    if log_path:
        utils.log_search_event(log_path, "stop", levels=last_level, reason=reason, found=len(found))
    return found
