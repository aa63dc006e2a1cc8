"""API middleware for the UCP checkout service.

Provides:
- Request ID correlation, tagged with the cart, session or line a request targets
- Error handling
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ucp_checkout.domain.value_objects import CartId, ItemKey, SessionId

logger = structlog.get_logger()

RESOURCE_PATTERNS = {
    "cart_id": CartId.pattern,
    "session_id": SessionId.pattern,
    "item_key": ItemKey.pattern,
}


def resource_ids(path: str) -> dict[str, str]:
    """Cart, session and item identifiers named in a request path."""
    ids = {}
    for segment in path.split("/"):
        for name, pattern in RESOURCE_PATTERNS.items():
            if pattern.fullmatch(segment):
                ids[name] = segment
    return ids


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate every log line of a request.

    The request ID (taken from ``X-Request-ID`` or generated) and any
    cart, session or item identifier in the path are bound to the
    structlog context, so service logs for a cart carry its ``cart_id``
    without each call site passing it. The ID is echoed back in the
    response header.
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())
        request.state.request_id = request_id
        ids = resource_ids(request.url.path)
        structlog.contextvars.bind_contextvars(request_id=request_id, **ids)

        start_time = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                **ids,
            )
            structlog.contextvars.unbind_contextvars("request_id", *ids)

        response.headers[self.HEADER_NAME] = request_id
        return response


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn anything the exception handlers missed into the error envelope."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)
            logger.exception(
                "Unhandled exception",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error_code": "internal_error",
                    "message": "An internal error occurred",
                    "details": {},
                    "request_id": request_id,
                },
            )


def setup_middleware(app: FastAPI) -> None:
    """Install middleware; the last one added runs first.

    Request correlation is outermost so the ID is bound before anything logs.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIdMiddleware)
