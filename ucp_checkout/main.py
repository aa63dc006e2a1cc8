"""UCP checkout API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, exception handlers and the background
expiration sweeper.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ucp_checkout.api.carts import router as carts_router
from ucp_checkout.api.checkouts import router as checkouts_router
from ucp_checkout.api.health import router as health_router
from ucp_checkout.api.middleware import setup_middleware
from ucp_checkout.application.sweeper import ExpirationSweeper
from ucp_checkout.domain.exceptions import DomainError
from ucp_checkout.infrastructure.collaborators import close_collaborators
from ucp_checkout.infrastructure.config import settings
from ucp_checkout.infrastructure.database import engine
from ucp_checkout.infrastructure.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    configure_logging()
    logger.info(
        "Starting UCP checkout API",
        version=settings.api_version,
        debug=settings.debug,
    )

    sweeper_task = None
    if settings.sweeper_enabled:
        sweeper = ExpirationSweeper()
        sweeper_task = asyncio.create_task(sweeper.run_forever(settings.sweeper_interval_seconds))

    yield

    logger.info("Shutting down UCP checkout API")
    if sweeper_task is not None:
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            logger.info("Expiration sweeper stopped")
    await close_collaborators()
    await engine.dispose()


app = FastAPI(
    title="UCP Checkout API",
    description="Cart and checkout session lifecycle manager",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(carts_router)
app.include_router(checkouts_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


STATUS_BY_KIND = {
    "not_found": 404,
    "conflict": 409,
    "gone": 410,
    "validation": 400,
}


def status_for(exc: DomainError) -> int:
    """HTTP status for a domain error.

    Upstream 4xx answers pass through; anything else from a collaborator
    is a bad gateway.
    """
    if exc.kind == "upstream":
        upstream_status = getattr(exc, "status_code", None)
        if upstream_status is not None and 400 <= upstream_status < 500:
            return upstream_status
        return 502
    return STATUS_BY_KIND.get(exc.kind, 400)


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": jsonable_encoder(details or {}),
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain errors onto the error envelope."""
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.code,
        status_code=status_code,
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return error_response(request, status_code, exc.code, exc.message, exc.details, headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies with the same envelope as domain errors."""
    return error_response(
        request,
        400,
        "invalid_request",
        "Request validation failed",
        {"errors": exc.errors()},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "error")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = "not_found" if exc.status_code == 404 else "error"
        message = str(detail)
        details = {}
    return error_response(request, exc.status_code, error_code, message, details)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return error_response(request, 500, "internal_error", "An internal error occurred")
