"""
API middleware.
"""

from flagengine.utils.context import RequestContextMiddleware

from .logging import LoggingMiddleware

__all__ = [
    "LoggingMiddleware",
    "RequestContextMiddleware",
]
