"""
Error types and helpers for safe, standardized error responses.

Domain errors (``RainarrError`` subclasses) propagate out of the service
layer and are turned into plain-text responses by ``rainarr_error_handler``.
Unexpected errors inside routes go through ``log_and_raise_500``.
"""
from typing import Any, Dict, Optional
from loguru import logger
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response


class RainarrError(Exception):
    """Base class for errors surfaced to the request layer."""

    status_code = 500


class NotFoundError(RainarrError):
    """A query, result or torrent row does not exist."""

    status_code = 404


class InfoHashMismatchError(RainarrError):
    """The indexer's declared info-hash disagrees with the one parsed from the link."""

    def __init__(self, declared: str, parsed: Optional[str]):
        self.declared = declared
        self.parsed = parsed
        super().__init__(f"infohash on tracker mismatch (declared {declared}, parsed {parsed})")


class InfoHashUnavailableError(RainarrError):
    """No info-hash could be derived from the result's links."""


class NoIndexersError(RainarrError):
    """Neither a tag nor the group's indexer list resolved to any indexer."""


class TorrentClientError(RainarrError):
    """qBittorrent rejected or failed an operation that must not fail silently."""

    status_code = 502


class RangeNotSatisfiableError(RainarrError):
    """The requested byte range cannot be served from the downloaded pieces."""

    status_code = 416

    def __init__(self, next_available: Optional[int], piece_size: int, file_size: int, message: str = "Range not satisfiable"):
        self.next_available = next_available
        self.piece_size = piece_size
        self.file_size = file_size
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "nextAvailableByte": self.next_available,
            "pieceSize": self.piece_size,
            "fileSize": self.file_size,
        }


async def rainarr_error_handler(request: Request, exc: RainarrError) -> Response:
    """Map domain errors onto HTTP responses."""
    if isinstance(exc, RangeNotSatisfiableError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"Content-Range": f"bytes */{exc.file_size}"},
        )

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path}: {exc}")
    return PlainTextResponse(str(exc), status_code=exc.status_code)


def log_and_raise_500(error: Exception, context: str) -> None:
    """
    Log error and raise a generic 500 response.

    Args:
        error: The caught exception
        context: Context description for logging (e.g., "get torrent info")
    """
    if isinstance(error, (RainarrError, HTTPException)):
        raise error
    logger.error(f"Error {context}: {type(error).__name__}: {error}")
    raise HTTPException(status_code=500, detail=f"Failed to {context}")
