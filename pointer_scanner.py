#!/usr/bin/env python3
"""
Terminal-based pointer path scanner for restart-stable value lookups.
"""
from __future__ import annotations

import argparse
import platform
import struct
import sys
import textwrap
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psutil
from tqdm import tqdm

from pathsearch import search_runner, utils
from pathsearch.expander import PointerPath
from pathsearch.utils import ModuleInfo

IS_LINUX = platform.system() == "Linux"

DEFAULT_CHUNK_SIZE = 0x4000


class ProcessOpenError(RuntimeError):
    """The target process does not exist or cannot be read."""


class RegionAlignmentError(ValueError):
    """A mapped region is not aligned to the target pointer size."""


class AddressNotCapturedError(LookupError):
    """No captured region covers the requested address."""


@dataclass(frozen=True)
class MemoryRegion:
    start: int
    end: int
    perms: str
    path: str = ""

    @property
    def size(self) -> int:
        return self.end - self.start

    @property
    def readable(self) -> bool:
        return "r" in self.perms


@dataclass
class ScanContext:
    pid: int
    name: str
    pointer_size: int
    exe_path: str
    handle: Optional[Any] = None
    process: Optional[psutil.Process] = None
    mock: bool = False
    mock_regions: List[MemoryRegion] = field(default_factory=list)
    mock_data: Dict[int, bytearray] = field(default_factory=dict)


def warn_banner() -> None:
    """Show the read-only notice."""
    banner = r"""
=====================================================================
   POINTER PATH SCANNER - READ-ONLY ANALYSIS

   The target process is snapshotted once and never written to.
   Reading another process needs ptrace rights (same user with
   ptrace_scope=0, CAP_SYS_PTRACE, or root).
=====================================================================
"""
    print(banner)


# ----- Process access ------------------------------------------------------


def open_process_handle(pid: int) -> Any:
    """Open /proc/<pid>/mem for unbuffered reading."""
    if not IS_LINUX:
        raise ProcessOpenError("Reading process memory requires Linux /proc support.")
    try:
        return open(f"/proc/{pid}/mem", "rb", 0)
    except FileNotFoundError as exc:
        raise ProcessOpenError(f"No such process: {pid}") from exc
    except PermissionError as exc:
        raise ProcessOpenError(
            f"Permission denied opening process {pid}. "
            "Need root, CAP_SYS_PTRACE, or ptrace_scope=0."
        ) from exc


def close_handle(handle: Optional[Any]) -> None:
    if handle is not None:
        handle.close()


def detect_pointer_size(exe_path: str) -> int:
    """Return 8 or 4 from the ELF class of the executable."""
    try:
        with open(exe_path, "rb") as fh:
            header = fh.read(5)
    except OSError:
        return struct.calcsize("P")
    if header[:4] == b"\x7fELF":
        return 8 if header[4] == 2 else 4
    return struct.calcsize("P")


def parse_map_range(addr: str) -> Tuple[int, int]:
    start_s, end_s = addr.split("-")
    return int(start_s, 16), int(end_s, 16)


def read_regions(context: ScanContext) -> List[MemoryRegion]:
    """Enumerate mapped regions in address order."""
    if context.mock:
        return list(context.mock_regions)
    if context.process is None:
        raise ProcessOpenError("Process not opened.")
    try:
        maps = context.process.memory_maps(grouped=False)
    except (psutil.AccessDenied, psutil.NoSuchProcess) as exc:
        raise ProcessOpenError(f"Cannot list memory maps of process {context.pid}: {exc}") from exc
    regions: List[MemoryRegion] = []
    for mmap in maps:
        start, end = parse_map_range(mmap.addr)
        regions.append(MemoryRegion(start, end, mmap.perms, mmap.path or ""))
    regions.sort(key=lambda r: r.start)
    return regions


def read_process_memory(context: ScanContext, address: int, size: int) -> bytes:
    """Read raw bytes from the target process or mock memory."""
    if context.mock:
        for region in context.mock_regions:
            if region.start <= address and address + size <= region.end:
                offset = address - region.start
                block = context.mock_data.get(region.start, b"")
                data = bytes(block[offset : offset + size])
                if len(data) != size:
                    raise ValueError(f"Mock region 0x{region.start:X} is not backed at 0x{address:X}.")
                return data
        raise ValueError(f"Mock address 0x{address:X} outside generated regions.")

    if context.handle is None:
        raise ProcessOpenError("Process reading requires an open handle.")
    context.handle.seek(address)
    data = context.handle.read(size)
    if data is None or len(data) != size:
        raise OSError(f"Short read at 0x{address:X}")
    return data


def check_region_alignment(region: MemoryRegion, pointer_size: int) -> None:
    if region.start > region.end:
        raise RegionAlignmentError(
            f"Region 0x{region.start:X}-0x{region.end:X} ends before it starts."
        )
    if region.start % pointer_size or region.end % pointer_size:
        raise RegionAlignmentError(
            f"Region 0x{region.start:X}-0x{region.end:X} is not aligned to {pointer_size} bytes."
        )


# ----- Snapshot ------------------------------------------------------------


class MemorySnapshot:
    """Immutable copy of the readable regions of one process."""

    def __init__(
        self,
        entries: Sequence[Tuple[MemoryRegion, bytes]],
        pointer_size: int,
        exe_path: str,
        byteorder: str = sys.byteorder,
    ) -> None:
        for region, data in entries:
            check_region_alignment(region, pointer_size)
            if len(data) != region.size:
                raise ValueError(
                    f"Region 0x{region.start:X} holds {len(data)} bytes, expected {region.size}."
                )
        self._entries: Tuple[Tuple[MemoryRegion, bytes], ...] = tuple(
            (region, bytes(data)) for region, data in entries
        )
        self.pointer_size = pointer_size
        self.exe_path = exe_path
        self.byteorder = byteorder
        self._index = sorted(range(len(self._entries)), key=lambda i: self._entries[i][0].start)
        self._starts = [self._entries[i][0].start for i in self._index]

    @property
    def regions(self) -> List[MemoryRegion]:
        return [region for region, _ in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def _entry_containing(self, address: int) -> Tuple[MemoryRegion, bytes]:
        pos = bisect_right(self._starts, address) - 1
        # Inclusive ends let a boundary address match two neighbours; the lower one wins.
        for candidate in (pos - 1, pos):
            if candidate < 0:
                continue
            region, data = self._entries[self._index[candidate]]
            if region.start <= address <= region.end:
                return region, data
        raise AddressNotCapturedError(f"Address 0x{address:X} is not in any captured region.")

    def region_containing(self, address: int) -> MemoryRegion:
        return self._entry_containing(address)[0]

    def _read(self, address: int, size: int) -> bytes:
        pos = bisect_right(self._starts, address) - 1
        if pos >= 0:
            region, data = self._entries[self._index[pos]]
            offset = address - region.start
            if offset + size <= len(data):
                return data[offset : offset + size]
        raise AddressNotCapturedError(
            f"Address 0x{address:X} does not hold {size} captured bytes."
        )

    def value_at(self, address: int) -> int:
        """Pointer-sized word stored at ``address``."""
        raw = self._read(address, self.pointer_size)
        return int.from_bytes(raw, self.byteorder, signed=False)

    def read_u32(self, address: int) -> int:
        return struct.unpack("<I", self._read(address, 4))[0]

    def locations_holding(self, value: int) -> List[int]:
        """Addresses of every aligned word equal to ``value``."""
        if value < 0 or value >= 1 << (self.pointer_size * 8):
            return []
        pattern = value.to_bytes(self.pointer_size, self.byteorder, signed=False)
        found: List[int] = []
        for region, data in self._entries:
            idx = data.find(pattern)
            while idx != -1:
                if idx % self.pointer_size == 0:
                    found.append(region.start + idx)
                    idx = data.find(pattern, idx + self.pointer_size)
                else:
                    idx = data.find(pattern, idx + 1)
        return found

    def is_in_main_image(self, address: int) -> bool:
        for region, _ in self._entries:
            if region.path == self.exe_path and region.start <= address <= region.end:
                return True
        return False

    def find_offset(
        self,
        target: int,
        max_offset: int,
        on_probe: Optional[Callable[[int, int], None]] = None,
    ) -> Optional[Tuple[int, List[int]]]:
        """Smallest aligned offset whose ``target - offset`` is stored somewhere."""
        try:
            region = self.region_containing(target)
        except AddressNotCapturedError:
            return None
        offset = 0
        while offset <= max_offset and target - offset >= region.start:
            candidate = target - offset
            if on_probe:
                on_probe(offset, candidate)
            addresses = self.locations_holding(candidate)
            if addresses:
                return offset, addresses
            offset += self.pointer_size
        return None

    def modules(self) -> List[ModuleInfo]:
        """Group regions by backing path into module ranges."""
        spans: Dict[str, Tuple[int, int]] = {}
        for region, _ in self._entries:
            if not region.path or region.path.startswith("["):
                continue
            low, high = spans.get(region.path, (region.start, region.end))
            spans[region.path] = (min(low, region.start), max(high, region.end))
        modules = [ModuleInfo(path, low, high - low) for path, (low, high) in spans.items()]
        modules.sort(key=lambda m: m.base_address)
        return modules


def capture_snapshot(
    context: ScanContext,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: bool = True,
    verbose: bool = False,
) -> Tuple[MemorySnapshot, int]:
    """Copy every readable region; return the snapshot and the skipped count."""
    chunk_size = max(chunk_size, context.pointer_size)
    entries: List[Tuple[MemoryRegion, bytes]] = []
    skipped = 0
    for region in tqdm(read_regions(context), desc="Snapshot", unit="region", disable=not progress):
        check_region_alignment(region, context.pointer_size)
        if not region.readable:
            continue
        if verbose:
            print(f"  0x{region.start:X}-0x{region.end:X} {region.perms} {region.path}")
        chunks: List[bytes] = []
        offset = 0
        try:
            while offset < region.size:
                to_read = min(chunk_size, region.size - offset)
                chunks.append(read_process_memory(context, region.start + offset, to_read))
                offset += to_read
        except (OSError, ValueError, OverflowError) as exc:
            skipped += 1
            if verbose:
                print(f"  skipped 0x{region.start:X}: {exc}")
            continue
        entries.append((region, b"".join(chunks)))
    snapshot = MemorySnapshot(entries, context.pointer_size, context.exe_path)
    return snapshot, skipped


class ScanSession:
    """Owns the process handle and snapshot for one search."""

    def __init__(
        self,
        context: ScanContext,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress: bool = True,
        verbose: bool = False,
    ) -> None:
        self.context = context
        self.chunk_size = chunk_size
        self.progress = progress
        self.verbose = verbose
        self.snapshot: Optional[MemorySnapshot] = None
        self.skipped = 0

    def __enter__(self) -> "ScanSession":
        try:
            self.snapshot, self.skipped = capture_snapshot(
                self.context, self.chunk_size, self.progress, self.verbose
            )
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        close_handle(self.context.handle)
        self.context.handle = None
        self.snapshot = None


# ----- Mock mode -----------------------------------------------------------

MOCK_EXE_PATH = "/opt/mock/target-app"
MOCK_TARGET = 0x7000
MOCK_VALUE = 1337


def build_mock_context() -> ScanContext:
    """Create a deterministic two-level pointer chain for demo purposes."""
    pointer_size = 8
    image = bytearray(0x1000)
    heap = bytearray(0x1000)
    data = bytearray(0x2000)
    struct.pack_into("<Q", image, 0x008, 0x3000)
    struct.pack_into("<Q", heap, 0x008, MOCK_TARGET - 0x10)
    struct.pack_into("<I", data, MOCK_TARGET - 0x6000, MOCK_VALUE)
    regions = [
        MemoryRegion(0x1000, 0x2000, "r-xp", MOCK_EXE_PATH),
        MemoryRegion(0x3000, 0x4000, "rw-p", "[heap]"),
        MemoryRegion(0x6000, 0x8000, "rw-p", "[anon]"),
    ]
    return ScanContext(
        pid=9999,
        name="mock-process",
        pointer_size=pointer_size,
        exe_path=MOCK_EXE_PATH,
        mock=True,
        mock_regions=regions,
        mock_data={0x1000: image, 0x3000: heap, 0x6000: data},
    )


# ----- Core flow -----------------------------------------------------------


def construct_context(pid: int) -> ScanContext:
    try:
        proc = psutil.Process(pid)
        name = proc.name()
        exe_path = proc.exe()
    except psutil.NoSuchProcess as exc:
        raise ProcessOpenError(f"No such process: {pid}") from exc
    except psutil.AccessDenied as exc:
        raise ProcessOpenError(f"Access denied to process {pid}.") from exc
    handle = open_process_handle(pid)
    return ScanContext(
        pid=pid,
        name=name,
        pointer_size=detect_pointer_size(exe_path),
        exe_path=exe_path,
        handle=handle,
        process=proc,
    )


def parse_address(raw: str) -> int:
    """Parse a 0x-prefixed hexadecimal or a decimal literal."""
    text = raw.strip()
    try:
        if text[:2].lower() == "0x":
            value = int(text[2:], 16)
        else:
            value = int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid address or number: {raw!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"negative value not allowed: {raw!r}")
    return value


def probe_value(snapshot: MemorySnapshot, address: int) -> str:
    try:
        return str(snapshot.read_u32(address))
    except AddressNotCapturedError:
        return "<not captured>"


def run_scan(context: ScanContext, args: argparse.Namespace, config: Dict[str, Any]) -> List[PointerPath]:
    """Snapshot the target and run the level search."""
    with ScanSession(
        context,
        chunk_size=config["chunk_size"],
        progress=not args.no_progress,
        verbose=args.verbose,
    ) as session:
        snapshot = session.snapshot
        print(
            f"Captured {len(snapshot)} readable region(s) of {context.name} "
            f"(PID {context.pid}); skipped {session.skipped}."
        )
        if config.get("log_path"):
            utils.log_search_event(
                config["log_path"],
                "snapshot",
                pid=context.pid,
                regions=len(snapshot),
                skipped=session.skipped,
                exe=context.exe_path,
            )
        print(f"value at {args.address:x}: {probe_value(snapshot, args.address)}")
        return search_runner.execute_search(
            snapshot,
            args.address,
            config,
            progress=not args.no_progress,
            verbose=args.verbose,
        )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find pointer paths from the main executable image to a live address.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
Examples:
  python pointer_scanner.py 4242 0x55d0c2a3e10c --max-depth 5
  python pointer_scanner.py 4242 94371234567 --max-offset 0x800 --stop-on-found
  python pointer_scanner.py --mock
"""
        ),
    )
    parser.add_argument("pid", nargs="?", help="PID of the target process (with --mock, the address may be given alone).")
    parser.add_argument("address", nargs="?", type=parse_address, help="Address holding the value (0x... or decimal).")
    parser.add_argument("--mock", action="store_true", help="Run against the built-in demo memory layout.")
    parser.add_argument("--max-offset", type=parse_address, help="Largest offset probed per step.")
    parser.add_argument("--max-depth", type=int, help="Stop after this many levels (0 searches until interrupted).")
    parser.add_argument("--stop-on-found", action="store_true", default=None, help="Stop after the first level that finds a possible path.")
    parser.add_argument("--chunk-size", type=parse_address, help="Snapshot read size in bytes.")
    parser.add_argument("--config", help="JSON file overriding search defaults.")
    parser.add_argument("--log-path", help="Append structured search events to this file.")
    parser.add_argument("--verbose", action="store_true", help="Print every region and offset probe.")
    parser.add_argument("--no-progress", action="store_true", help="Hide progress bars.")
    args = parser.parse_args(argv)
    if args.mock:
        if args.address is None and args.pid is not None:
            # a lone positional is the address
            try:
                args.address = parse_address(args.pid)
            except argparse.ArgumentTypeError as exc:
                parser.error(f"argument address: {exc}")
        if args.address is None:
            args.address = MOCK_TARGET
        args.pid = None
    elif args.pid is None or args.address is None:
        parser.error("PID and ADDRESS are required unless --mock is given.")
    else:
        try:
            args.pid = int(args.pid, 10)
        except ValueError:
            parser.error(f"argument pid: invalid PID {args.pid!r}")
        if args.pid <= 0:
            parser.error(f"argument pid: PID must be a positive integer (got {args.pid})")
    if args.max_depth is not None and args.max_depth < 0:
        parser.error("--max-depth must be zero or positive.")
    return args


def main(argv: Optional[Sequence[str]] = None) -> None:
    warn_banner()
    args = parse_args(argv)
    config = search_runner.resolve_config(args, search_runner.load_search_config(args.config))

    try:
        if args.mock:
            context = build_mock_context()
            print("Running in mock demonstration mode. No real processes will be touched.")
        else:
            context = construct_context(args.pid)
    except ProcessOpenError as exc:
        print(f"Fatal error: {exc}")
        if not IS_LINUX:
            print("Hint: use --mock on non-Linux systems.")
        sys.exit(1)

    try:
        run_scan(context, args, config)
    except KeyboardInterrupt:
        print("\nSearch interrupted by user.")
    except (ProcessOpenError, RegionAlignmentError) as exc:
        print(f"Fatal error: {exc}")
        sys.exit(1)
    finally:
        close_handle(context.handle)


if __name__ == "__main__":
    main()
