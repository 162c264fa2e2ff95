"""Prometheus metrics for monitoring and observability."""

from __future__ import annotations

import re
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

# Request metrics
REQUEST_COUNT = Counter(
    "falconx_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "falconx_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

REQUEST_IN_PROGRESS = Gauge(
    "falconx_http_requests_in_progress",
    "HTTP requests currently being processed",
    ["method", "endpoint"],
)

# Error metrics
ERROR_COUNT = Counter(
    "falconx_errors_total",
    "Total application errors",
    ["error_type", "endpoint"],
)

# Detection pipeline metrics
PINGS_TOTAL = Counter(
    "falconx_detection_pings_total",
    "Detection pings by outcome",
    ["outcome"],  # authorized, new_clone, repeat_clone
)

ACTIONS_TOTAL = Counter(
    "falconx_action_decisions_total",
    "Action decisions returned to reporting clients",
    ["action"],
)

RATE_LIMIT_DENIALS = Counter(
    "falconx_rate_limit_denials_total",
    "Requests rejected by the rate limiter",
    ["tier"],
)

QUOTA_INCREMENTS = Counter(
    "falconx_quota_increments_total",
    "Plan quota increments by outcome",
    ["outcome"],  # counted, extra, blocked
)

BEST_EFFORT_FAILURES = Counter(
    "falconx_best_effort_failures_total",
    "Non-critical writes that failed and were skipped",
    ["operation"],
)

SECURITY_EVENTS = Counter(
    "falconx_security_events_total",
    "Security events recorded by the auditor",
    ["type"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    metrics: bytes = generate_latest()
    return metrics


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    content_type: str = CONTENT_TYPE_LATEST
    return content_type


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    # Paths to exclude from metrics
    EXCLUDE_PATHS = {"/metrics", "/health", "/ready", "/favicon.ico"}

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path in self.EXCLUDE_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)

        REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status_code=str(response.status_code),
            ).inc()
            REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )
            return response

        except Exception as e:
            ERROR_COUNT.labels(error_type=type(e).__name__, endpoint=endpoint).inc()
            raise

        finally:
            REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()

    def _normalize_path(self, path: str) -> str:
        """Replace UUIDs and script ids with placeholders to bound label cardinality."""
        path = re.sub(
            r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
            "{id}",
            path,
            flags=re.IGNORECASE,
        )
        return re.sub(r"fx_[0-9a-f]{12}", "{script_id}", path)


# Helper functions for recording business metrics


def record_ping(outcome: str) -> None:
    PINGS_TOTAL.labels(outcome=outcome).inc()


def record_action(action: str) -> None:
    ACTIONS_TOTAL.labels(action=action).inc()


def record_rate_limit_denial(tier: str) -> None:
    RATE_LIMIT_DENIALS.labels(tier=tier).inc()


def record_quota_increment(outcome: str) -> None:
    QUOTA_INCREMENTS.labels(outcome=outcome).inc()


def record_best_effort_failure(operation: str) -> None:
    BEST_EFFORT_FAILURES.labels(operation=operation).inc()


def record_security_event(event_type: str) -> None:
    SECURITY_EVENTS.labels(type=event_type).inc()
