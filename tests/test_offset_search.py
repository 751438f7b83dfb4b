from conftest import EXE_PATH, make_snapshot

TARGET = 0x7000


def _layout(words):
    return [
        (0x1000, 0x2000, EXE_PATH, {}),
        (0x3000, 0x4000, "[heap]", words),
        (0x6000, 0x8000, "[anon]", {}),
    ]


def test_smallest_offset_wins():
    snapshot = make_snapshot(_layout({0x3010: TARGET - 0x20, 0x3020: TARGET - 0x18}))
    assert snapshot.find_offset(TARGET, 0x400) == (0x18, [0x3020])


def test_all_locations_for_first_offset():
    snapshot = make_snapshot(
        _layout({0x3010: TARGET - 0x8, 0x3100: TARGET - 0x8, 0x3200: TARGET})
    )
    assert snapshot.find_offset(TARGET - 0x8, 0x400) == (0, [0x3010, 0x3100])
    assert snapshot.find_offset(TARGET, 0x400) == (0, [0x3200])


def test_zero_bound_probes_only_offset_zero():
    snapshot = make_snapshot(_layout({0x3010: TARGET - 0x8}))
    probes = []
    assert snapshot.find_offset(TARGET, 0, lambda off, addr: probes.append((off, addr))) is None
    assert probes == [(0, TARGET)]


def test_bound_is_inclusive():
    snapshot = make_snapshot(_layout({0x3010: TARGET - 0x40}))
    assert snapshot.find_offset(TARGET, 0x38) is None
    assert snapshot.find_offset(TARGET, 0x40) == (0x40, [0x3010])


def test_probing_stops_at_region_start():
    snapshot = make_snapshot(_layout({0x3010: 0x5FF8}))
    probes = []
    assert snapshot.find_offset(0x6010, 0x400, lambda off, addr: probes.append(addr)) is None
    assert probes == [0x6010, 0x6008, 0x6000]


def test_uncaptured_target_returns_none():
    snapshot = make_snapshot(_layout({0x3010: 0x5000}))
    assert snapshot.find_offset(0x5008, 0x400) is None
