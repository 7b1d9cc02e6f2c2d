"""
FastAPI application entry point.

Wires the order administration, checkout, invoice and logistics routers,
the shared invoice stream registry and order notifier, request logging,
exception handlers, health endpoints, and the periodic empty period
invoice sweep.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from storefront.api.deps import UnauthorizedError
from storefront.api.v1 import api_router
from storefront.core.config import get_settings
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.database.connection import (
    check_database_health,
    close_database_connections,
    get_db_session,
)
from storefront.services.invoices.reconciliation import ReconciliationService
from storefront.services.invoices.stream import InvoiceStreamRegistry
from storefront.services.notifications.service import EmailService, OrderNotifier

configure_logging()
logger = get_logger(__name__)

limiter = Limiter(key_func=get_remote_address)


async def sweep_empty_period_invoices(registry: InvoiceStreamRegistry, interval: int) -> None:
    """
    Background task deleting period invoices that no longer hold orders.

    Runs every ``interval`` seconds; a failed sweep is logged and the next
    one runs on schedule.
    """
    while True:
        try:
            async with get_db_session() as session:
                service = ReconciliationService(session, registry=registry)
                deleted = await service.cleanup_empty_period_invoices()
                logger.info("Empty period invoice sweep completed", deleted=deleted)
        except Exception as e:
            logger.error(
                "Empty period invoice sweep failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Create the shared invoice stream registry and order notifier, start the
    sweep task when enabled, and release resources on shutdown.
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        app.state.invoice_stream = InvoiceStreamRegistry()
        app.state.order_notifier = OrderNotifier(EmailService())
        logger.info("Resources initialized successfully", email_backend=settings.email_backend)

    sweep_task: Optional[asyncio.Task] = None
    if settings.enable_background_tasks:
        sweep_task = asyncio.create_task(
            sweep_empty_period_invoices(
                app.state.invoice_stream,
                settings.invoice_cleanup_interval_seconds,
            )
        )
        logger.info(
            "Background tasks started",
            invoice_cleanup_interval_seconds=settings.invoice_cleanup_interval_seconds,
        )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass
            logger.info("Background tasks stopped")
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Storefront back-office API for orders, invoices and deliveries",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Set the correlation id, log the request and time its processing.

    The id is echoed back in the X-Request-ID header.
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


@app.exception_handler(UnauthorizedError)
async def unauthorized_exception_handler(
    request: Request, exc: UnauthorizedError
) -> JSONResponse:
    requester = exc.requester
    logger.warning(
        "Unauthorized request",
        method=request.method,
        path=request.url.path,
        reason=str(exc),
        requester_id=str(requester.id) if requester else None,
        requester_email=requester.email if requester else None,
    )

    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": "Unauthorized", "code": exc.code},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log unexpected exceptions and return a generic error body that does not
    expose internal details.
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/health/ready", tags=["Health"], summary="Readiness check endpoint")
async def readiness_check():
    """Report ready only when the database answers."""
    database_ok = await check_database_health()
    if not database_ok:
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy",
    }


@app.get("/health/live", tags=["Health"], summary="Liveness check endpoint")
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(api_router, prefix=settings.api_v1_prefix)
