"""Tests for metrics module."""

from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY

from falconx.metrics import (
    ERROR_COUNT,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    MetricsMiddleware,
    get_metrics,
    get_metrics_content_type,
    record_action,
    record_best_effort_failure,
    record_ping,
    record_quota_increment,
    record_rate_limit_denial,
    record_security_event,
)


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsOutput:
    """Tests for metrics output generation."""

    def test_get_metrics_returns_bytes(self):
        assert isinstance(get_metrics(), bytes)

    def test_get_metrics_content_type(self):
        assert "text/plain" in get_metrics_content_type()

    def test_get_metrics_contains_custom_metrics(self):
        record_ping("authorized")
        output = get_metrics().decode("utf-8")
        assert "falconx_http_requests_total" in output
        assert "falconx_detection_pings_total" in output


class TestMetricsMiddleware:
    """Tests for metrics middleware."""

    @pytest.fixture
    def middleware(self):
        return MetricsMiddleware(MagicMock())

    def test_normalize_path_uuid(self, middleware):
        path = "/api/users/550e8400-e29b-41d4-a716-446655440000/clones"
        assert middleware._normalize_path(path) == "/api/users/{id}/clones"

    def test_normalize_path_script_id(self, middleware):
        assert middleware._normalize_path("/api/js/fx_0123456789ab") == "/api/js/{script_id}"

    def test_normalize_path_no_id(self, middleware):
        assert middleware._normalize_path("/api/collect") == "/api/collect"

    def test_exclude_paths(self, middleware):
        assert {"/metrics", "/health", "/ready"} <= middleware.EXCLUDE_PATHS


class TestBusinessMetrics:
    """Business counters increment under their label."""

    def test_record_ping(self):
        before = _sample("falconx_detection_pings_total", outcome="new_clone")
        record_ping("new_clone")
        assert _sample("falconx_detection_pings_total", outcome="new_clone") == before + 1

    def test_record_action(self):
        before = _sample("falconx_action_decisions_total", action="redirect")
        record_action("redirect")
        assert _sample("falconx_action_decisions_total", action="redirect") == before + 1

    def test_record_rate_limit_denial(self):
        before = _sample("falconx_rate_limit_denials_total", tier="public")
        record_rate_limit_denial("public")
        assert _sample("falconx_rate_limit_denials_total", tier="public") == before + 1

    def test_record_quota_increment(self):
        before = _sample("falconx_quota_increments_total", outcome="extra")
        record_quota_increment("extra")
        assert _sample("falconx_quota_increments_total", outcome="extra") == before + 1

    def test_record_best_effort_failure(self):
        before = _sample("falconx_best_effort_failures_total", operation="detection_log")
        record_best_effort_failure("detection_log")
        after = _sample("falconx_best_effort_failures_total", operation="detection_log")
        assert after == before + 1

    def test_record_security_event(self):
        before = _sample("falconx_security_events_total", type="auth_failure")
        record_security_event("auth_failure")
        assert _sample("falconx_security_events_total", type="auth_failure") == before + 1


class TestMetricLabels:
    """Tests for metric label validation."""

    def test_request_count_labels(self):
        assert REQUEST_COUNT._labelnames == ("method", "endpoint", "status_code")

    def test_request_latency_labels(self):
        assert REQUEST_LATENCY._labelnames == ("method", "endpoint")

    def test_error_count_labels(self):
        assert ERROR_COUNT._labelnames == ("error_type", "endpoint")
