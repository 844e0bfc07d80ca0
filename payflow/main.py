"""Payflow: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other payflow imports
# (structlog caches the processor chain on first use).
from payflow.core.logging import configure_structlog
from payflow.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payflow.api.routes import api_router
from payflow.core.config import get_settings
from payflow.core.exceptions import InternalError, PayflowError
from payflow.db import close_db, close_redis, get_redis, init_db, init_redis
from payflow.middleware.correlation import get_correlation_id, setup_correlation_middleware
from payflow.providers import validate_provider_config
from payflow.services import ReconcilerScheduler, build_payment_service
from payflow.services.notifications import drain_notifications

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_provider_config(settings)
    logger.info("provider_config_validated", default_provider=settings.payment_provider)

    await init_db()
    logger.info("db_initialized")

    redis_connected = await init_redis()
    logger.info("redis_initialized", connected=redis_connected)

    app.state.reconciler = None
    if settings.reconciler_enabled:
        scheduler = ReconcilerScheduler.from_settings(build_payment_service(), redis_client=get_redis())
        scheduler.start()
        app.state.reconciler = scheduler

    yield

    logger.info("shutdown_begin")
    if app.state.reconciler is not None:
        await app.state.reconciler.stop()
    await drain_notifications()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


def _log_error(request: Request, event: str, debug_id: str, **extra) -> None:
    logger.error(
        event,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        **extra,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())
    _log_error(request, "http_exception", debug_id, status_code=exc.status_code, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def payflow_exception_handler(request: Request, exc: PayflowError) -> JSONResponse:
    """Render domain errors with their stable code. Internal errors stay generic."""
    debug_id = str(uuid.uuid4())
    _log_error(
        request,
        "payflow_error",
        debug_id,
        status_code=exc.status_code,
        code=exc.code,
        error=exc.message,
        exc_info=isinstance(exc, InternalError),
    )
    detail = "Internal server error" if isinstance(exc, InternalError) else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "code": exc.code, "debug_id": debug_id},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400 invalid_request, not FastAPI's default 422."""
    debug_id = str(uuid.uuid4())
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    _log_error(request, "request_validation_failed", debug_id, errors=errors)
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "code": "invalid_request", "errors": errors, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled errors. Full detail is logged, never returned."""
    debug_id = str(uuid.uuid4())
    _log_error(
        request,
        "unhandled_exception",
        debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "internal_error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(PayflowError)(payflow_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Payment lifecycle and reconciliation engine",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "payflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
