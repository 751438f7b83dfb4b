from __future__ import annotations

import struct
from typing import Dict, List, Sequence, Tuple

import pytest

from pointer_scanner import MemoryRegion, MemorySnapshot, build_mock_context, capture_snapshot

EXE_PATH = "/usr/bin/target-app"


def make_snapshot(
    layout: Sequence[Tuple[int, int, str, Dict[int, int]]],
    exe_path: str = EXE_PATH,
    pointer_size: int = 8,
) -> MemorySnapshot:
    """Build a snapshot from (start, end, path, {address: word}) tuples."""
    fmt = "<Q" if pointer_size == 8 else "<I"
    entries: List[Tuple[MemoryRegion, bytes]] = []
    for start, end, path, words in layout:
        block = bytearray(end - start)
        for address, value in words.items():
            struct.pack_into(fmt, block, address - start, value)
        entries.append((MemoryRegion(start, end, "rw-p", path), bytes(block)))
    return MemorySnapshot(entries, pointer_size, exe_path, byteorder="little")


@pytest.fixture
def mock_snapshot() -> MemorySnapshot:
    snapshot, skipped = capture_snapshot(build_mock_context(), progress=False)
    assert skipped == 0
    return snapshot
