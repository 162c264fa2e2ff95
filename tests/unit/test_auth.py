"""Tests for bearer-token verification and user access checks."""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import pytest

from falconx.auth import JWTAuthProvider, authorize_user_access, create_access_token
from falconx.config import get_settings
from falconx.exceptions import AuthenticationError, AuthorizationError
from falconx.security.audit import EventType, SecurityAuditor
from falconx.services.detection_engine import ClientInfo

SECRET = "test-jwt-secret"
USER_ID = uuid.UUID("8c6f2d5e-3f4a-4b1c-9d2e-7a6b5c4d3e2f")


def _token(**claims) -> str:
    payload = {
        "sub": str(USER_ID),
        "aud": "authenticated",
        "exp": datetime.now(UTC) + timedelta(minutes=5),
    }
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, SECRET, "HS256")


@pytest.fixture
def provider() -> JWTAuthProvider:
    return JWTAuthProvider(SECRET, audience="authenticated")


class TestJWTAuthProvider:
    """Tests for token verification."""

    def test_valid_token(self, provider: JWTAuthProvider):
        assert provider.get_user_id(_token()) == USER_ID

    def test_expired_token(self, provider: JWTAuthProvider):
        token = _token(exp=datetime.now(UTC) - timedelta(minutes=1))
        with pytest.raises(AuthenticationError, match="Token expired"):
            provider.get_user_id(token)

    def test_wrong_signature(self, provider: JWTAuthProvider):
        token = jwt.encode(
            {"sub": str(USER_ID), "exp": datetime.now(UTC) + timedelta(minutes=5)},
            "other-secret",
            "HS256",
        )
        with pytest.raises(AuthenticationError, match="Invalid token"):
            provider.get_user_id(token)

    def test_wrong_audience(self, provider: JWTAuthProvider):
        with pytest.raises(AuthenticationError, match="Invalid token"):
            provider.get_user_id(_token(aud="someone-else"))

    def test_missing_exp(self, provider: JWTAuthProvider):
        with pytest.raises(AuthenticationError):
            provider.get_user_id(_token(exp=None))

    def test_non_uuid_subject(self, provider: JWTAuthProvider):
        with pytest.raises(AuthenticationError, match="Invalid token"):
            provider.get_user_id(_token(sub="not-a-uuid"))

    def test_audience_not_checked_when_unset(self):
        provider = JWTAuthProvider(SECRET, audience=None)
        assert provider.get_user_id(_token(aud="anything")) == USER_ID

    def test_garbage(self, provider: JWTAuthProvider):
        with pytest.raises(AuthenticationError):
            provider.get_user_id("not.a.jwt")


def test_create_access_token_round_trip() -> None:
    settings = get_settings()
    token = create_access_token(USER_ID, settings)
    assert JWTAuthProvider.from_settings(settings).get_user_id(token) == USER_ID


class TestAuthorizeUserAccess:
    """Callers may only act on their own account."""

    @pytest.fixture
    def client(self) -> ClientInfo:
        return ClientInfo(ip="9.9.9.9", user_agent="ua", endpoint="/api/plan-limits")

    def test_defaults_to_authenticated_user(self, client: ClientInfo):
        assert authorize_user_access(None, USER_ID, SecurityAuditor(), client) == USER_ID

    def test_same_user_allowed(self, client: ClientInfo):
        assert authorize_user_access(USER_ID, USER_ID, SecurityAuditor(), client) == USER_ID

    def test_other_user_denied_and_audited(self, client: ClientInfo):
        auditor = SecurityAuditor()
        other = uuid.uuid4()

        with pytest.raises(AuthorizationError):
            authorize_user_access(other, USER_ID, auditor, client)

        [event] = auditor.recent_events()
        assert event.type == EventType.UNAUTHORIZED_ACCESS
        assert event.user_id == str(USER_ID)
        assert event.details["requested_user_id"] == str(other)
