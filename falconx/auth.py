"""Bearer-token session identity.

Accounts and sessions belong to the external auth provider; this API only
verifies the provider's signed JWT and reads the user id from ``sub``.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from falconx.config import Settings, get_settings
from falconx.deps import AuditorDep, ClientDep, SettingsDep
from falconx.exceptions import AuthenticationError, AuthorizationError
from falconx.security.audit import SecurityAuditor
from falconx.sentry import set_user_context
from falconx.services.detection_engine import ClientInfo

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class JWTAuthProvider:
    """Verifies access tokens signed by the auth provider."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: str | None = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "JWTAuthProvider":
        return cls(
            secret=settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
            audience=settings.auth_jwt_audience,
        )

    def get_user_id(self, token: str) -> uuid.UUID:
        """User id for a valid token.

        Raises:
            AuthenticationError: expired, tampered or malformed tokens.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"require": ["exp", "sub"], "verify_aud": self.audience is not None},
            )
            return uuid.UUID(str(payload["sub"]))
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired") from None
        except (jwt.InvalidTokenError, ValueError):
            raise AuthenticationError("Invalid token") from None


def create_access_token(
    user_id: uuid.UUID | str,
    settings: Settings | None = None,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """Create a JWT access token the way the auth provider does."""
    settings = settings or get_settings()
    payload: dict[str, object] = {
        "sub": str(user_id),
        "exp": datetime.now(UTC) + expires_in,
    }
    if settings.auth_jwt_audience:
        payload["aud"] = settings.auth_jwt_audience
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def get_auth_provider(settings: SettingsDep) -> JWTAuthProvider:
    return JWTAuthProvider.from_settings(settings)


async def get_current_user_id(
    provider: Annotated[JWTAuthProvider, Depends(get_auth_provider)],
    auditor: AuditorDep,
    client: ClientDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> uuid.UUID:
    if credentials is None or not credentials.credentials:
        auditor.auth_failure(client.ip, client.user_agent, client.endpoint, reason="missing_token")
        raise AuthenticationError()

    try:
        user_id = provider.get_user_id(credentials.credentials)
    except AuthenticationError as e:
        auditor.auth_failure(client.ip, client.user_agent, client.endpoint, reason=e.message)
        raise

    set_user_context(str(user_id))
    return user_id


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def authorize_user_access(
    requested_user_id: uuid.UUID | None,
    authenticated_user_id: uuid.UUID,
    auditor: SecurityAuditor,
    client: ClientInfo,
) -> uuid.UUID:
    """Resolve the target user; callers may only act on themselves.

    Raises:
        AuthorizationError: when ``requested_user_id`` is someone else.
    """
    if requested_user_id is None or requested_user_id == authenticated_user_id:
        return authenticated_user_id

    auditor.unauthorized_access(
        client.ip,
        client.user_agent,
        client.endpoint,
        user_id=str(authenticated_user_id),
        requested_user_id=str(requested_user_id),
    )
    raise AuthorizationError()
