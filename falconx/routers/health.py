"""Health check and metrics endpoints."""

import time
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from falconx import __version__
from falconx.database import get_session_maker
from falconx.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["Health"])
logger = structlog.get_logger()

# Track server start time for uptime calculation
_server_start_time = time.time()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Health status: healthy, degraded, unhealthy")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str = Field(..., description="API version")
    uptime_seconds: int = Field(..., description="Server uptime in seconds")


class DependencyCheck(BaseModel):
    """Individual dependency check result."""

    status: str = Field(..., description="Status: healthy, unhealthy")
    latency_ms: float | None = Field(None, description="Check latency in milliseconds")
    error: str | None = Field(None, description="Error type if unhealthy")


class ReadyResponse(HealthResponse):
    """Readiness check response with dependency status."""

    checks: dict[str, DependencyCheck] = Field(..., description="Individual dependency checks")


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness: the process is up. Dependencies are checked by /ready."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC).isoformat(),
        version=__version__,
        uptime_seconds=int(time.time() - _server_start_time),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(request: Request, response: Response) -> ReadyResponse:
    """Readiness: database connectivity, plus Redis when it backs the rate limiter."""
    checks: dict[str, DependencyCheck] = {}

    try:
        start = time.perf_counter()
        async with get_session_maker()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = DependencyCheck(
            status="healthy",
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
    except SQLAlchemyError as e:
        logger.warning("Database health check failed", error=str(e))
        checks["database"] = DependencyCheck(status="unhealthy", error=type(e).__name__)

    redis = getattr(request.app.state.rate_limiter, "redis", None)
    if redis is not None:
        try:
            start = time.perf_counter()
            await redis.ping()
            checks["redis"] = DependencyCheck(
                status="healthy",
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
        except Exception as e:
            logger.warning("Redis health check failed", error=str(e))
            checks["redis"] = DependencyCheck(status="unhealthy", error=type(e).__name__)

    unhealthy = sum(1 for c in checks.values() if c.status == "unhealthy")
    if unhealthy == 0:
        overall = "healthy"
    elif unhealthy < len(checks):
        overall = "degraded"
    else:
        overall = "unhealthy"
    if overall != "healthy":
        response.status_code = 503

    return ReadyResponse(
        status=overall,
        timestamp=datetime.now(UTC).isoformat(),
        version=__version__,
        uptime_seconds=int(time.time() - _server_start_time),
        checks=checks,
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
