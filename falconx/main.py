"""FastAPI application factory and main entrypoint."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from falconx import __version__
from falconx.config import Settings, get_settings
from falconx.exceptions import FalconXError, error_body
from falconx.logging import setup_logging
from falconx.sentry import capture_exception, init_sentry

# Initialize logging
setup_logging()
logger = structlog.get_logger()


async def run_maintenance(app: FastAPI, interval_seconds: float) -> None:
    """Sweep expired rate-limit entries and old audit events on a fixed interval."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await app.state.rate_limiter.sweep()
            trimmed = app.state.auditor.cleanup()
            logger.debug("maintenance_completed", limiter_removed=removed, audit_removed=trimmed)
        except Exception as e:
            # Keep the loop alive; the next tick retries
            logger.error("maintenance_failed", error=str(e), exc_info=e)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    logger.info("Starting FalconX API", env=settings.env, debug=settings.debug, version=__version__)

    task: asyncio.Task[None] | None = None
    if settings.maintenance_enabled:
        task = asyncio.create_task(run_maintenance(app, settings.maintenance_interval_seconds))

    yield

    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    redis = getattr(app.state.rate_limiter, "redis", None)
    if redis is not None:
        await redis.aclose()
    logger.info("Shutting down FalconX API")


def build_state(app: FastAPI, settings: Settings) -> None:
    """Create the per-application components the request pipeline shares."""
    from falconx.security.audit import SecurityAuditor
    from falconx.security.rate_limiter import build_rate_limiter
    from falconx.services.detection_engine import DetectionEngine
    from falconx.services.identity import ScriptIdentityResolver

    app.state.rate_limiter = build_rate_limiter(settings.rate_limit_backend, settings.redis_url)
    app.state.auditor = SecurityAuditor(
        max_events=settings.security_audit_max_events,
        retention=timedelta(hours=settings.security_audit_retention_hours),
    )
    app.state.detection_engine = DetectionEngine(
        resolver=ScriptIdentityResolver(settings.script_secret_key),
        auditor=app.state.auditor,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    init_sentry()

    app = FastAPI(
        title="FalconX",
        description="Clone detection and countermeasures for sales pages",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    build_state(app, settings)

    # Middleware (order matters - last added runs first)
    from falconx.metrics import MetricsMiddleware
    from falconx.middleware import (
        LoggingMiddleware,
        RequestIDMiddleware,
        SecurityHeadersMiddleware,
    )
    from falconx.security.cors import OriginPolicy, OriginPolicyMiddleware

    app.add_middleware(OriginPolicyMiddleware, policy=OriginPolicy(settings))
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    from falconx.routers import health, protected, public

    app.include_router(health.router)
    app.include_router(public.router)
    app.include_router(protected.router)

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(FalconXError)
    async def falconx_error_handler(request: Request, exc: FalconXError) -> ORJSONResponse:
        """Handle custom FalconX exceptions."""
        logger.warning(
            "Application error",
            error_code=exc.code,
            message=exc.message,
            reason=getattr(exc, "reason", None),
            path=request.url.path,
        )
        extra = {"retry_after": exc.details["retry_after"]} if "retry_after" in exc.details else {}
        return ORJSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message, **extra),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Reject malformed requests without echoing field details."""
        logger.warning(
            "Validation error",
            path=request.url.path,
            fields=[".".join(str(loc) for loc in err.get("loc", ())) for err in exc.errors()],
        )
        return ORJSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("invalid_request", "Invalid data"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
        """Handle unhandled exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        capture_exception(exc)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("internal_error", "An unexpected error occurred"),
        )


app = create_app()
