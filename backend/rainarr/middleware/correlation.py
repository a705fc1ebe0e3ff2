"""
Correlation IDs for request and background-loop tracing.
"""
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Context variable holding the correlation ID for the current request or loop step
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the correlation ID for the current context."""
    return correlation_id_var.get()


@contextmanager
def bind_correlation_id(value: str):
    """
    Tag log lines emitted inside the block with ``value``.

    Background loops use this so their output can be told apart from
    request handling, e.g. ``ticker`` / ``query-12`` / ``poller``.
    """
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Adds a correlation ID to each request.

    Read from the X-Correlation-ID header if present, otherwise a short
    generated id. Echoed back in the response headers.
    """

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())[:8]

        with bind_correlation_id(correlation_id):
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = correlation_id
            return response


def correlation_id_filter(record):
    """
    Loguru filter that adds correlation_id to log records.
    """
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True
