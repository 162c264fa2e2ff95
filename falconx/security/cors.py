"""Origin policy for the two endpoint families.

Public endpoints are called by the embedded script from arbitrary domains
(including clones), so they answer any origin without credentials. Protected
dashboard endpoints only echo an allow-listed origin and otherwise answer
``null``, which browsers treat as a CORS failure.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from falconx.config import Settings

logger = structlog.get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

PUBLIC_PATHS = frozenset({"/api/collect", "/api/detect", "/api/process", "/api/execute-action"})

LOCAL_DEV_PREFIXES = ("http://localhost:", "http://127.0.0.1:", "https://localhost:")

PUBLIC_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


class OriginPolicy:
    """Decides which CORS headers a response gets."""

    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self._cached: list[str] | None = None
        self._cached_at = 0.0

    def allowed_origins(self) -> list[str]:
        """Allow-list, re-read at most once per ``origin_cache_seconds``."""
        now = self.clock()
        if self._cached is None or now - self._cached_at > self.settings.origin_cache_seconds:
            self._cached = self.settings.allowed_origin_list
            self._cached_at = now
        return self._cached

    def is_origin_allowed(self, origin: str | None) -> bool:
        if not origin:
            return False
        if self.settings.is_development and origin.startswith(LOCAL_DEV_PREFIXES):
            return True

        allowed = self.allowed_origins()
        if origin in allowed:
            return True

        candidate = urlsplit(origin)
        if not candidate.hostname:
            return False
        for entry in allowed:
            parsed = urlsplit(entry)
            if not parsed.hostname:
                continue
            # Subdomains of an allowed origin, same scheme only
            if (
                candidate.scheme == parsed.scheme
                and candidate.hostname.endswith("." + parsed.hostname)
            ):
                return True
        return False

    @staticmethod
    def is_public_path(path: str) -> bool:
        return path.rstrip("/") in PUBLIC_PATHS

    def headers_for(self, path: str, origin: str | None) -> dict[str, str]:
        if self.is_public_path(path):
            return dict(PUBLIC_CORS_HEADERS)
        return self.protected_headers(origin)

    def protected_headers(self, origin: str | None) -> dict[str, str]:
        allowed = origin if origin and self.is_origin_allowed(origin) else "null"
        if origin and allowed == "null":
            logger.info("cors_origin_rejected", origin=origin)
        return {
            "Access-Control-Allow-Origin": allowed,
            "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Max-Age": "86400",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Vary": "Origin",
        }


class OriginPolicyMiddleware(BaseHTTPMiddleware):
    """Answers preflights and attaches the CORS profile for the route."""

    def __init__(self, app: ASGIApp, policy: OriginPolicy) -> None:
        super().__init__(app)
        self.policy = policy

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        headers = self.policy.headers_for(request.url.path, request.headers.get("Origin"))

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=headers)

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
