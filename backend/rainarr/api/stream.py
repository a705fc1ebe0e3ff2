"""
Byte-range streaming of files inside torrents, including partially
downloaded ones.
"""
import os
import re
from typing import Iterator, Optional, Tuple
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from rainarr.config import settings
from rainarr.constants import STREAM_CHUNK_SIZE_BYTES, STREAM_CONTENT_TYPE
from rainarr.services.piece_resolver import find_next_available_range
from rainarr.utils.errors import RangeNotSatisfiableError

router = APIRouter(prefix="/api/stream", tags=["stream"])

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: Optional[str], file_size: int) -> Optional[Tuple[int, Optional[int]]]:
    """
    Parse a single-range ``Range`` header into ``(start, end)``.

    ``end`` is None for open ranges. Suffix ranges (``bytes=-N``) are turned
    into absolute offsets. Returns None for a missing or malformed header,
    in which case the whole file is served. Only the first of several
    ranges is honoured.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header.split(",")[0].strip())
    if not match:
        return None
    start, end = match.groups()
    if not start and not end:
        return None
    if not start:
        suffix = int(end)
        return max(file_size - suffix, 0), file_size - 1
    return int(start), int(end) if end else None


def iter_file(path: str, start: int, end: int, chunk_size: int = STREAM_CHUNK_SIZE_BYTES) -> Iterator[bytes]:
    """Yield bytes ``start..end`` (inclusive) of a file."""
    with open(path, "rb") as f:
        f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            data = f.read(min(chunk_size, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


def resolve_range(layout, requested: Tuple[int, Optional[int]], piece_gating: bool) -> Tuple[int, int]:
    """Turn a requested range into the inclusive range that will be served."""
    start, end = requested
    if piece_gating and layout.progress < 1:
        return find_next_available_range(layout.segments, layout.size, layout.piece_size, start, end)

    last_byte = layout.size - 1
    if start > last_byte:
        raise RangeNotSatisfiableError(None, layout.piece_size, layout.size, "Requested range starts beyond end of file")
    end = last_byte if end is None else min(end, last_byte)
    if start > end:
        raise RangeNotSatisfiableError(None, layout.piece_size, layout.size, "Range start is after range end")
    return start, end


@router.get("/{torrent_hash}/{file_index}")
async def stream_file(torrent_hash: str, file_index: int, request: Request):
    """Serve a torrent's file with HTTP range support."""
    layout = await request.app.state.torrent_service.get_content_layout(torrent_hash.lower(), file_index)
    if not os.path.isfile(layout.path):
        logger.warning(f"Stream requested for missing file {layout.path}")
        raise HTTPException(status_code=404, detail="File not found on disk")

    headers = {"Accept-Ranges": "bytes"}
    requested = parse_range(request.headers.get("range"), layout.size)
    if requested is None:
        headers["Content-Length"] = str(layout.size)
        return StreamingResponse(
            iter_file(layout.path, 0, layout.size - 1),
            media_type=STREAM_CONTENT_TYPE,
            headers=headers,
        )

    start, end = resolve_range(layout, requested, settings.streaming.piece_gating)
    logger.debug(f"Streaming {layout.name} bytes {start}-{end}/{layout.size}")
    headers["Content-Range"] = f"bytes {start}-{end}/{layout.size}"
    headers["Content-Length"] = str(end - start + 1)
    return StreamingResponse(
        iter_file(layout.path, start, end),
        status_code=206,
        media_type=STREAM_CONTENT_TYPE,
        headers=headers,
    )
