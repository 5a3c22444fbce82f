"""HTTP middleware: request-id tracing and fixed cross-origin headers.

``RequestIdMiddleware`` ensures every response carries an ``X-Request-ID``
header and binds the id into structlog contextvars.  ``CorsMiddleware``
answers every ``OPTIONS`` preflight with an empty 200 and stamps the same
permissive header set on every other response.
"""

from __future__ import annotations

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey, X-Session-ID",
}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a unique request ID to every HTTP request/response cycle."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Reuse the client's ``X-Request-ID`` or generate one, and echo it back."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, service="mailtrack")
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class CorsMiddleware(BaseHTTPMiddleware):
    """Short-circuit preflight requests and add CORS headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Return an empty 200 for ``OPTIONS``; otherwise decorate the response."""
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response
