"""
Piece-to-byte-range resolution for partial-file streaming.

qBittorrent reports completion per piece for the whole torrent. A file
occupies an inclusive piece range, and because files are laid out back to
back, its first and last pieces are usually shared with its neighbours.
These helpers translate the piece bitmap into byte segments relative to the
start of each file and narrow HTTP ranges to bytes that are on disk.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rainarr.models.torrent import PIECE_COMPLETE, PIECE_DOWNLOADING
from rainarr.utils.errors import RangeNotSatisfiableError

AVAILABLE = "available"
DOWNLOADING = "downloading"
MISSING = "missing"

_STATE_NAMES = {PIECE_COMPLETE: AVAILABLE, PIECE_DOWNLOADING: DOWNLOADING}


@dataclass(frozen=True)
class FileSpan:
    """A file's place inside its torrent."""
    index: int
    size: int
    piece_start: int
    piece_end: int


@dataclass(frozen=True)
class Segment:
    """Bytes of one file that fall inside one piece. Offsets are inclusive and file-relative."""
    piece_index: int
    start: int
    end: int
    state: str

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def available(self) -> bool:
        return self.state == AVAILABLE

    def to_dict(self) -> dict:
        return {
            "piece": self.piece_index,
            "start": self.start,
            "end": self.end,
            "length": self.length,
            "state": self.state,
        }


def piece_state(pieces: Sequence[int], index: int) -> str:
    if 0 <= index < len(pieces):
        return _STATE_NAMES.get(pieces[index], MISSING)
    return MISSING


def file_segments(
    pieces: Sequence[int],
    piece_range: Tuple[int, int],
    piece_size: int,
    file_size: int,
    first_piece_offset: int = 0,
) -> List[Segment]:
    """
    One segment per piece in ``piece_range``.

    ``first_piece_offset`` is where the file begins inside its first piece,
    i.e. the bytes of that piece still belonging to the previous file.
    The last segment is trimmed so the lengths add up to ``file_size``.
    """
    if piece_size <= 0:
        raise ValueError("piece_size must be positive")
    if not 0 <= first_piece_offset < piece_size:
        raise ValueError(f"first_piece_offset {first_piece_offset} outside piece of {piece_size} bytes")

    start_piece, end_piece = piece_range
    if file_size <= 0 or end_piece < start_piece:
        return []

    segments = []
    position = 0
    for piece in range(start_piece, end_piece + 1):
        room = piece_size - first_piece_offset if piece == start_piece else piece_size
        length = min(room, file_size - position)
        if length <= 0:
            break
        segments.append(Segment(piece, position, position + length - 1, piece_state(pieces, piece)))
        position += length
    return segments


def torrent_file_segments(
    pieces: Sequence[int],
    files: Sequence[FileSpan],
    piece_size: int,
) -> Dict[int, List[Segment]]:
    """
    Segments for every file of a torrent, keyed by file index.

    ``files`` must be in declared order; the byte offset carried from one
    file to the next decides where the following file starts in its first piece.
    """
    result = {}
    absolute = 0
    for span in files:
        offset = absolute % piece_size
        result[span.index] = file_segments(
            pieces, (span.piece_start, span.piece_end), piece_size, span.size, offset
        )
        absolute += max(span.size, 0)
    return result


def available_ranges(segments: Sequence[Segment]) -> List[Tuple[int, int]]:
    """Merge consecutive available segments into inclusive byte ranges."""
    ranges: List[Tuple[int, int]] = []
    for segment in segments:
        if not segment.available:
            continue
        if ranges and ranges[-1][1] + 1 == segment.start:
            ranges[-1] = (ranges[-1][0], segment.end)
        else:
            ranges.append((segment.start, segment.end))
    return ranges


def available_fraction(segments: Sequence[Segment], file_size: int) -> float:
    if file_size <= 0:
        return 0.0
    return sum(s.length for s in segments if s.available) / file_size


def find_next_available_range(
    segments: Sequence[Segment],
    file_size: int,
    piece_size: int,
    start: int,
    end: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Narrow the request ``start-end`` to bytes that are already downloaded.

    The start moves forward to the first available segment at or after it;
    the end is cut at the first gap. Raises RangeNotSatisfiableError carrying
    the next piece-aligned offset worth retrying from.
    """
    last_byte = file_size - 1
    if file_size <= 0 or start > last_byte:
        raise RangeNotSatisfiableError(None, piece_size, file_size, "Requested range starts beyond end of file")

    end = last_byte if end is None else min(end, last_byte)
    if start > end:
        raise RangeNotSatisfiableError(None, piece_size, file_size, "Range start is after range end")

    position = next((i for i, s in enumerate(segments) if s.start <= start <= s.end), None)
    if position is None:
        raise RangeNotSatisfiableError(None, piece_size, file_size, "No piece information for this range")

    first = next((i for i in range(position, len(segments)) if segments[i].available), None)
    if first is None:
        boundary = segments[position].end + 1
        raise RangeNotSatisfiableError(
            boundary if boundary <= last_byte else None,
            piece_size,
            file_size,
            "No downloaded data at or after the requested offset",
        )

    resolved_start = max(start, segments[first].start)
    resolved_end = segments[first].end
    for segment in segments[first + 1:]:
        if not segment.available or resolved_end >= end:
            break
        resolved_end = segment.end
    resolved_end = min(resolved_end, end)

    if resolved_start > resolved_end:
        raise RangeNotSatisfiableError(
            resolved_start, piece_size, file_size, "Requested range is not downloaded yet"
        )
    return resolved_start, resolved_end
