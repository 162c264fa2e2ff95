"""FastAPI dependencies for dependency injection."""

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request

from falconx.config import Settings, get_settings
from falconx.database import DbSession
from falconx.exceptions import RateLimitError
from falconx.metrics import record_rate_limit_denial
from falconx.security.audit import SecurityAuditor
from falconx.security.rate_limiter import (
    RateLimiter,
    RateLimitTier,
    get_client_ip,
    get_request_identifier,
)
from falconx.services.detection_engine import ClientInfo, DetectionEngine

# Re-export DbSession for convenience
__all__ = [
    "DbSession",
    "SettingsDep",
    "AuditorDep",
    "EngineDep",
    "ClientDep",
    "rate_limit",
]


# Settings dependency
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter  # type: ignore[no-any-return]


def get_auditor(request: Request) -> SecurityAuditor:
    return request.app.state.auditor  # type: ignore[no-any-return]


def get_detection_engine(request: Request) -> DetectionEngine:
    return request.app.state.detection_engine  # type: ignore[no-any-return]


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent") or "unknown",
        endpoint=request.url.path,
    )


RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
AuditorDep = Annotated[SecurityAuditor, Depends(get_auditor)]
EngineDep = Annotated[DetectionEngine, Depends(get_detection_engine)]
ClientDep = Annotated[ClientInfo, Depends(get_client_info)]


def rate_limit(tier: RateLimitTier) -> Callable[..., Awaitable[None]]:
    """Dependency factory enforcing one rate-limit tier on a route."""

    async def check(
        request: Request,
        settings: SettingsDep,
        limiter: RateLimiterDep,
        auditor: AuditorDep,
        client: ClientDep,
    ) -> None:
        if not settings.rate_limit_enabled:
            return

        result = await limiter.check_limit(get_request_identifier(request), tier)
        if result.allowed:
            return

        record_rate_limit_denial(tier.value)
        auditor.rate_limit(
            client.ip,
            client.user_agent,
            client.endpoint,
            tier=tier.value,
            reset_time=result.reset_time,
        )
        raise RateLimitError(
            retry_after=result.retry_after(limiter.clock()),
            limit=result.limit,
            reset_time=result.reset_time,
        )

    return check
