"""
Middleware for Rainarr.
"""
from rainarr.middleware.correlation import CorrelationIdMiddleware, bind_correlation_id

__all__ = ["CorrelationIdMiddleware", "bind_correlation_id"]
