"""
Request-scoped context.

Every request gets a request id, a correlation id and the operator
identity (actor) from upstream headers. They live in contextvars so
structlog lines emitted deep inside the registry or the audit log carry
them without threading arguments through the core.

Usage:
    app.add_middleware(RequestContextMiddleware)

    ctx = get_request_context()
    actor = ctx.actor if ctx else DEFAULT_ACTOR
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
ACTOR_HEADER = "X-Actor"
DEFAULT_ACTOR = "system"


@dataclass(frozen=True)
class RequestContext:
    """Tracing ids and operator identity for one request."""
    request_id: str
    correlation_id: str
    actor: str = DEFAULT_ACTOR


_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


def get_request_context() -> RequestContext | None:
    """Context of the current request, or None outside a request."""
    return _request_context.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Bind a RequestContext for the duration of each request.

    The request id comes from X-Request-ID (generated if absent), the
    correlation id from X-Correlation-ID (defaults to the request id).
    Both are echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        ctx = RequestContext(
            request_id=request_id,
            correlation_id=request.headers.get(CORRELATION_ID_HEADER) or request_id,
            actor=request.headers.get(ACTOR_HEADER) or DEFAULT_ACTOR,
        )

        token = _request_context.set(ctx)
        request.state.context = ctx
        try:
            response = await call_next(request)
        finally:
            _request_context.reset(token)

        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        response.headers[CORRELATION_ID_HEADER] = ctx.correlation_id
        return response


def add_request_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor: stamp request ids and actor on every line."""
    ctx = _request_context.get()
    if ctx is not None:
        event_dict.setdefault("request_id", ctx.request_id)
        event_dict.setdefault("correlation_id", ctx.correlation_id)
        event_dict.setdefault("actor", ctx.actor)
    return event_dict
