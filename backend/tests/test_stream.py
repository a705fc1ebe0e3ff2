"""
Tests for Range header parsing and range resolution.
"""
from types import SimpleNamespace

import pytest

from rainarr.api.stream import iter_file, parse_range, resolve_range
from rainarr.services.piece_resolver import file_segments
from rainarr.utils.errors import RangeNotSatisfiableError

PIECE = 16384


def make_layout(pieces, size=4 * PIECE, progress=0.5):
    return SimpleNamespace(
        size=size,
        piece_size=PIECE,
        progress=progress,
        segments=file_segments(pieces, (0, len(pieces) - 1), PIECE, size),
    )


@pytest.mark.parametrize("header, expected", [
    ("bytes=0-99", (0, 99)),
    ("bytes=100-", (100, None)),
    ("bytes=-100", (900, 999)),
    ("bytes=-5000", (0, 999)),
    ("bytes=10-20, 30-40", (10, 20)),
    (None, None),
    ("", None),
    ("bytes=-", None),
    ("items=0-1", None),
    ("bytes=a-b", None),
])
def test_parse_range(header, expected):
    assert parse_range(header, 1000) == expected


def test_open_range_runs_to_end_of_file():
    layout = make_layout([0, 0, 0, 0])
    assert resolve_range(layout, (100, None), piece_gating=False) == (100, 4 * PIECE - 1)


def test_end_clamped_to_file_size():
    layout = make_layout([2, 2, 2, 2])
    assert resolve_range(layout, (0, 10 ** 9), piece_gating=False) == (0, 4 * PIECE - 1)


def test_start_past_end_of_file():
    layout = make_layout([2, 2, 2, 2])
    with pytest.raises(RangeNotSatisfiableError):
        resolve_range(layout, (4 * PIECE, None), piece_gating=False)


def test_gating_stops_at_first_missing_piece():
    layout = make_layout([2, 2, 0, 2])
    assert resolve_range(layout, (10, None), piece_gating=True) == (10, 2 * PIECE - 1)


def test_gating_skips_forward_to_downloaded_bytes():
    layout = make_layout([0, 2, 2, 0])
    assert resolve_range(layout, (0, None), piece_gating=True) == (PIECE, 3 * PIECE - 1)


def test_gating_without_downloaded_data_points_at_next_piece():
    layout = make_layout([2, 0, 0, 0])
    with pytest.raises(RangeNotSatisfiableError) as excinfo:
        resolve_range(layout, (PIECE + 5, None), piece_gating=True)
    assert excinfo.value.next_available == 2 * PIECE


def test_gating_ignored_for_finished_files():
    layout = make_layout([0, 0, 0, 0], progress=1.0)
    assert resolve_range(layout, (0, 99), piece_gating=True) == (0, 99)


def test_iter_file_reads_inclusive_range(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(bytes(range(256)) * 4)

    chunks = list(iter_file(str(path), 10, 19, chunk_size=3))

    assert b"".join(chunks) == bytes(range(10, 20))
    assert len(chunks) == 4
