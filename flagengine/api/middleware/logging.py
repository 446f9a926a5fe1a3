"""
Access logging for the flag API.

One line per request on the stdlib logger. Evaluation traffic is high
volume, so successful evaluate calls log at DEBUG; management calls
log at INFO, and server errors at WARNING.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from flagengine.utils.context import get_request_context

logger = logging.getLogger(__name__)

EVALUATE_PREFIX = "/api/evaluate"


def _level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.WARNING
    if path.startswith(EVALUATE_PREFIX) and status_code < 400:
        return logging.DEBUG
    return logging.INFO


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, latency and the acting operator."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        ctx = getattr(request.state, "context", None) or get_request_context()
        path = request.url.path
        logger.log(
            _level_for(path, response.status_code),
            "%s %s -> %s (%.2fms)",
            request.method,
            path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": ctx.request_id if ctx else None,
                "actor": ctx.actor if ctx else None,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
