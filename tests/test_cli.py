import argparse

import psutil
import pytest

import pointer_scanner


@pytest.mark.parametrize(
    "raw, expected",
    [("0x7000", 0x7000), ("0X1f", 0x1F), ("28672", 28672), ("0", 0)],
)
def test_parse_address(raw, expected):
    assert pointer_scanner.parse_address(raw) == expected


@pytest.mark.parametrize("raw", ["7000h", "0xZZ", "", "-5", "1e3"])
def test_parse_address_rejects(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        pointer_scanner.parse_address(raw)


def test_missing_positionals_exit_with_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.parse_args(["1234"])
    assert excinfo.value.code == 2


def test_bad_address_exits():
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.parse_args(["1234", "nope"])
    assert excinfo.value.code == 2


def test_mock_defaults_to_demo_target():
    args = pointer_scanner.parse_args(["--mock"])
    assert args.address == pointer_scanner.MOCK_TARGET
    assert args.max_depth is None


def test_main_mock_run(capsys):
    pointer_scanner.main(["--mock", "--no-progress"])
    out = capsys.readouterr().out
    assert "value at 7000: 1337" in out
    assert "Captured 3 readable region(s) of mock-process (PID 9999); skipped 0." in out
    assert "level 2" in out
    assert "FOUND POSSIBLE PATH:\n[(0x1008, 0x8), (0x3008, 0x10), (0x7000, 0x0)]" in out


def test_main_mock_uncaptured_address(capsys):
    pointer_scanner.main(["--mock", "--no-progress", "0x5000"])
    out = capsys.readouterr().out
    assert "value at 5000: <not captured>" in out
    assert "throwing away 0x5000" in out


def test_main_unknown_process_is_fatal(monkeypatch, capsys):
    def missing(pid):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(pointer_scanner.psutil, "Process", missing)
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.main(["424242", "0x1000", "--no-progress"])
    assert excinfo.value.code == 1
    assert "Fatal error: No such process: 424242" in capsys.readouterr().out


def test_detect_pointer_size(tmp_path):
    elf64 = tmp_path / "elf64"
    elf64.write_bytes(b"\x7fELF\x02rest")
    elf32 = tmp_path / "elf32"
    elf32.write_bytes(b"\x7fELF\x01rest")
    assert pointer_scanner.detect_pointer_size(str(elf64)) == 8
    assert pointer_scanner.detect_pointer_size(str(elf32)) == 4


def test_mock_takes_address_alone():
    args = pointer_scanner.parse_args(["--mock", "0x5000"])
    assert args.address == 0x5000
    assert args.pid is None


def test_mock_ignores_pid_when_both_given():
    args = pointer_scanner.parse_args(["--mock", "77", "0x6000"])
    assert args.address == 0x6000
    assert args.pid is None


def test_mock_rejects_bad_lone_address():
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.parse_args(["--mock", "nowhere"])
    assert excinfo.value.code == 2


def test_pid_is_parsed_as_decimal():
    args = pointer_scanner.parse_args(["4242", "0x1000"])
    assert args.pid == 4242
    assert args.address == 0x1000


@pytest.mark.parametrize("pid", ["-5", "0", "0x10", "abc"])
def test_invalid_pid_exits_before_search(pid, capsys):
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.main([pid, "0x1000", "--no-progress"])
    assert excinfo.value.code == 2
    assert "argument pid" in capsys.readouterr().err


def test_misaligned_region_is_fatal(monkeypatch, capsys):
    original = pointer_scanner.build_mock_context

    def misaligned_context():
        context = original()
        context.mock_regions.append(pointer_scanner.MemoryRegion(0x9004, 0xA000, "rw-p", "[anon]"))
        return context

    monkeypatch.setattr(pointer_scanner, "build_mock_context", misaligned_context)
    with pytest.raises(SystemExit) as excinfo:
        pointer_scanner.main(["--mock", "--no-progress"])
    assert excinfo.value.code == 1
    assert "Fatal error: Region 0x9004-0xA000 is not aligned to 8 bytes." in capsys.readouterr().out
