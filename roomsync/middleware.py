"""
FastAPI middleware for request tracing and correlation.

Every request gets a unique ID that is returned as the X-Request-ID header and
bound into structlog's context, so all log lines emitted while handling a
webhook, OAuth callback or poller run can be correlated.
"""

from __future__ import annotations

import uuid
from typing import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request IDs to each HTTP request.

    An incoming X-Request-ID header is reused when present (the scheduler that
    triggers the poller sets one); otherwise a UUID4 is generated. The ID is:
    1. Stored in request.state.request_id for route handlers
    2. Bound into structlog contextvars for the duration of the request
    3. Echoed back in the X-Request-ID response header

    Example:
        >>> from roomsync.middleware import RequestIDMiddleware
        >>> app.add_middleware(RequestIDMiddleware)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """
        Process each request by adding a unique request ID.

        Args:
            request: Incoming FastAPI request
            call_next: Next middleware or route handler in chain

        Returns:
            Response with X-Request-ID header added
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "path")

        response.headers["X-Request-ID"] = request_id
        return response
