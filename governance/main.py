"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.routing import Match

from governance.api.routes import health_router, router
from governance.config import settings
from governance.db.migration_runner import run_migrations
from governance.db.session import close_engines, get_write_engine
from governance.exceptions import (
    DataIntegrityError,
    DatabaseError,
    GovernanceError,
    InviteAlreadyUsedError,
    InviteExpiredError,
    InviteNotFoundError,
    LastOwnerError,
    MembershipConflictError,
    QuotaExceededError,
    ResourceNotFoundError,
    TenantNotFoundError,
    UnauthorizedError,
    WriteVerificationError,
)
from governance.models.api import QuotaExceededDetail
from governance.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from governance.observability.tracing import instrument_fastapi, instrument_sqlalchemy

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.run_migrations_on_startup:
        # Alembic is synchronous; keep the event loop free while it runs
        await asyncio.to_thread(run_migrations)

    if settings.tracing_enabled:
        instrument_sqlalchemy(get_write_engine())

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


# =============================================================================
# Error Handlers
# =============================================================================

# Governance error -> HTTP status. Checked in order; first match wins.
ERROR_STATUS: tuple[tuple[type[GovernanceError], int], ...] = (
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (TenantNotFoundError, status.HTTP_404_NOT_FOUND),
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (InviteNotFoundError, status.HTTP_404_NOT_FOUND),
    (MembershipConflictError, status.HTTP_409_CONFLICT),
    (InviteAlreadyUsedError, status.HTTP_409_CONFLICT),
    (LastOwnerError, status.HTTP_409_CONFLICT),
    (InviteExpiredError, status.HTTP_410_GONE),
    (WriteVerificationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (DataIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (DatabaseError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

# Label for requests no route matches (404s)
UNMATCHED_ROUTE = "unmatched"


def route_template(request: Request) -> str:
    """
    Path template of the route serving the request.

    Used for metric labels and log fields so tenant ids, cache keys and
    invite tokens never leave the request.
    """
    partial: str | None = None
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_ROUTE)
        if match == Match.PARTIAL and partial is None:
            partial = getattr(route, "path", None)
    return partial or UNMATCHED_ROUTE


def status_for(exc: GovernanceError) -> int:
    """HTTP status for a governance error."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
    """429 with the reset time so clients can back off until the next period."""
    body = QuotaExceededDetail(
        detail=str(exc),
        action=exc.action,
        reason=exc.reason,
        limit=exc.limit,
        used=exc.used,
        reset_at=exc.reset_at,
    )
    headers: dict[str, str] = {}
    if exc.reset_at is not None:
        retry_after = max(0, int(exc.reset_at.timestamp() - time.time()))
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    """Map service-layer errors to HTTP responses."""
    status_code = status_for(exc)
    if status_code >= 500:
        metrics.record_error(type(exc).__name__, "governance_error")
        logger.error("governance_error", path=route_template(request), error=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log detailed validation errors for debugging."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may contain non-serializable objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=route_template(request),
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": sanitized_errors},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = route_template(request)
    method = request.method

    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)

        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )
        return response
    except Exception as e:
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")

        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(router)
app.include_router(health_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format. 404 when METRICS_ENABLED is off."""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "governance.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
