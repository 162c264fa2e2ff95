"""Sentry error tracking integration."""

from __future__ import annotations

from typing import Any

import structlog

from falconx import __version__
from falconx.config import get_settings

logger = structlog.get_logger(__name__)

SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key")
QUIET_TRANSACTIONS = ("/health", "/ready", "/metrics")

# Flag to track if Sentry is initialized
_sentry_initialized = False


def init_sentry() -> bool:
    """Initialize Sentry SDK if configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    global _sentry_initialized

    settings = get_settings()

    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping initialization")
        return False

    if _sentry_initialized:
        return True

    import sentry_sdk
    from sentry_sdk.integrations.asyncio import AsyncioIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.env,
            release=f"falconx@{__version__}",
            sample_rate=1.0,
            traces_sample_rate=0.1 if settings.is_production else 1.0,
            # Visitor IPs and user agents stay out of Sentry
            send_default_pii=False,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                StarletteIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                AsyncioIntegration(),
            ],
            before_send=_before_send,
            before_send_transaction=_before_send_transaction,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=settings.env)
    return True


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """Drop client errors and scrub credentials before sending."""
    if "exc_info" in hint:
        from falconx.exceptions import FalconXError

        _, exc_value, _ = hint["exc_info"]
        if isinstance(exc_value, FalconXError) and 400 <= exc_value.status_code < 500:
            return None

    headers = event.get("request", {}).get("headers")
    if headers:
        for header in SENSITIVE_HEADERS:
            if header in headers:
                headers[header] = "[Filtered]"

    return event


def _before_send_transaction(
    event: dict[str, Any], hint: dict[str, Any]  # noqa: ARG001
) -> dict[str, Any] | None:
    if event.get("transaction") in QUIET_TRANSACTIONS:
        return None
    return event


def set_user_context(user_id: str) -> None:
    """Attach the authenticated user id to subsequent Sentry events."""
    if not _sentry_initialized:
        return

    import sentry_sdk

    sentry_sdk.set_user({"id": user_id})


def capture_exception(exception: BaseException) -> str | None:
    """Capture an exception and send to Sentry.

    Returns the event ID if captured, None otherwise.
    """
    if not _sentry_initialized:
        return None

    import sentry_sdk

    event_id: str | None = sentry_sdk.capture_exception(exception)
    return event_id
