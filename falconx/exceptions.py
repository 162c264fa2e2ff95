"""Custom exceptions and error handling."""

from datetime import UTC, datetime
from typing import Any

from fastapi import status


class FalconXError(Exception):
    """Base exception for the FalconX application."""

    def __init__(
        self,
        message: str,
        code: str = "error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(message)


class InvalidPayloadError(FalconXError):
    """Malformed request body or identifier.

    The message sent to clients is always generic; ``reason`` is for logs only.
    """

    def __init__(self, reason: str, message: str = "Invalid data"):
        self.reason = reason
        super().__init__(
            message=message,
            code="invalid_request",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class NotFoundError(FalconXError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            message=message,
            code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
        )


class AuthenticationError(FalconXError):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            code="authentication_error",
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(FalconXError):
    """Authorization failed."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            code="authorization_error",
            status_code=status.HTTP_403_FORBIDDEN,
        )


class RateLimitError(FalconXError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int, limit: int, reset_time: float):
        reset_at = datetime.fromtimestamp(reset_time, UTC).isoformat()
        super().__init__(
            message="Too many requests. Please try again later.",
            code="rate_limit_exceeded",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retry_after": retry_after},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": reset_at,
            },
        )
        self.retry_after = retry_after


def error_body(code: str, message: str, **extra: Any) -> dict[str, Any]:
    """Standard error envelope with a timestamp."""
    return {
        "error": {
            "code": code,
            "message": message,
            "timestamp": datetime.now(UTC).isoformat(),
            **extra,
        }
    }
