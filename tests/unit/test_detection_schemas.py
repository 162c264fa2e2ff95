"""Tests for ping payload normalization."""

import uuid

import pytest

from falconx.exceptions import InvalidPayloadError
from falconx.schemas.detection import (
    DetectionResponse,
    TokenKind,
    _excerpt,
    normalize_ping,
)


class TestCompactPayload:
    def test_normalizes(self):
        ping = normalize_ping(
            {
                "uid": "abc",
                "dom": "WWW.Clone.com",
                "url": "https://www.clone.com/?fbclid=1",
                "ref": "https://facebook.com/",
                "ua": "Mozilla/5.0",
                "ts": "2026-03-10T12:00:00Z",
                "unknown": "ignored",
            }
        )
        assert ping.token_kind == TokenKind.COMPACT
        assert ping.token == "abc"
        assert ping.domain == "clone.com"
        assert ping.referrer == "https://facebook.com/"
        assert ping.user_agent == "Mozilla/5.0"
        assert ping.slugs == []

    def test_slugs(self):
        ping = normalize_ping(
            {"uid": "abc", "dom": "clone.com", "slugs": [{"slug": "vsl", "total_visits": 3}]}
        )
        assert ping.slugs[0].slug == "vsl"
        assert ping.slugs[0].total_visits == 3
        assert ping.slugs[0].unique_visitors == 0

    def test_missing_domain(self):
        with pytest.raises(InvalidPayloadError):
            normalize_ping({"uid": "abc"})

    def test_domain_empty_after_normalization(self):
        with pytest.raises(InvalidPayloadError):
            normalize_ping({"uid": "abc", "dom": "https://"})


class TestLegacyPayload:
    def test_normalizes(self):
        ping = normalize_ping(
            {
                "scriptId": "fx_0123456789ab",
                "domain": "https://clone.com/page",
                "referrer": "https://google.com/",
                "userAgent": "Mozilla/5.0",
            }
        )
        assert ping.token_kind == TokenKind.LEGACY
        assert ping.token == "fx_0123456789ab"
        assert ping.domain == "clone.com"
        assert ping.user_agent == "Mozilla/5.0"

    def test_bad_script_id(self):
        with pytest.raises(InvalidPayloadError):
            normalize_ping({"scriptId": "nope", "domain": "clone.com"})


class TestInvalidPayloads:
    @pytest.mark.parametrize("payload", [None, [], "text", 42, {}, {"foo": "bar"}])
    def test_rejected(self, payload):
        with pytest.raises(InvalidPayloadError) as exc_info:
            normalize_ping(payload)
        assert exc_info.value.message == "Invalid data"

    def test_excerpt_is_truncated(self):
        assert len(_excerpt({"x": "y" * 1000})) == 203


def test_detection_response_uses_camel_case() -> None:
    clone_id = uuid.uuid4()
    response = DetectionResponse(
        status="detected",
        message="Clone detected",
        domain="clone.com",
        original_domain="original.com",
        clone_id=clone_id,
        processing_time=12,
    )
    body = response.model_dump(by_alias=True, exclude_none=True)
    assert body["originalDomain"] == "original.com"
    assert body["cloneId"] == clone_id
    assert body["processingTime"] == 12
    assert "upgradeRequired" not in body
