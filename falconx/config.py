"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Development origins that are always allowed on the protected CORS profile
DEV_ORIGINS = ["http://localhost:3000", "http://localhost:3001", "http://127.0.0.1:3000"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: Literal["development", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    app_url: str | None = None  # Public dashboard URL, e.g. https://app.falconx.com.br

    # CORS (protected profile)
    allowed_origins: str = ""  # Comma-separated
    origin_cache_seconds: int = 60

    # Database
    database_url: str

    # Redis (only required for the shared rate limiter backend)
    redis_url: str | None = None

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_backend: Literal["memory", "redis"] = "memory"

    # Authentication (bearer tokens issued by the auth provider)
    auth_jwt_secret: str
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: str | None = "authenticated"

    # Legacy script ids
    script_secret_key: str

    # Background maintenance
    maintenance_enabled: bool = True
    maintenance_interval_seconds: int = 300

    # Security audit trail
    security_audit_max_events: int = 10000
    security_audit_retention_hours: int = 24

    # Sentry
    sentry_dsn: str | None = None

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.env == "development"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.env == "test"

    @property
    def allowed_origin_list(self) -> list[str]:
        """Allow-list for the protected CORS profile, deduplicated in order."""
        origins = [origin.strip() for origin in self.allowed_origins.split(",")]
        if self.app_url:
            origins.append(self.app_url.strip())
        if self.is_development:
            origins.extend(DEV_ORIGINS)
        return list(dict.fromkeys(origin for origin in origins if origin))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    try:
        return Settings()  # type: ignore[call-arg]
    except Exception as e:
        if "validation" in type(e).__name__.lower() or "required" in str(e).lower():
            raise RuntimeError(
                "Missing required environment variables. Set DATABASE_URL, AUTH_JWT_SECRET "
                "and SCRIPT_SECRET_KEY."
            ) from e
        raise
