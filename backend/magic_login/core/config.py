"""Application configuration loaded from environment variables.

Settings for the magic login core (token expiry, attempt logging, redirect
decoding), the token store backend, the session cookie and the internal API.
Uses pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
_INSECURE_DEFAULT_PASSWORD = "magic_login_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32

# Token lifetime bounds, in hours (one hour to one week)
MIN_TOKEN_EXPIRY_HOURS = 1
MAX_TOKEN_EXPIRY_HOURS = 168

# Nested percent-decoding applied to redirect parameters
MAX_REDIRECT_DECODE_DEPTH = 5


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "magic_login"
    database_user: str = "magic_login_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Public site URL. Its host is the canonical "same site" host for
    # link rewriting and redirect validation.
    site_url: str = "http://localhost:8000"

    # Magic login
    magic_login_enabled: bool = True
    token_expiry_hours: int = 24
    logging_enabled: bool = False
    log_capacity: int = 1000
    redirect_decode_depth: int = 2
    unsubscribe_markers: list[str] = ["unsubscribe"]

    # Token store: "memory" (single process) or "database" (SQL table)
    token_store_backend: Literal["memory", "database"] = "memory"

    # Scheduled sweep of expired/used tokens (daily by default)
    cleanup_worker_enabled: bool = True
    cleanup_interval_seconds: int = 24 * 60 * 60

    # Session cookie issued after a successful magic login
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "magic-login"
    auth_audience: str = "magic-login"
    auth_session_hours: int = 24 * 14
    auth_cookie_name: str = "magic_login.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""

    # Shared secret for the internal API used by the email pipeline
    internal_api_key: SecretStr = SecretStr("")

    # Rate limiting (slowapi) for the internal API
    rate_limit_enabled: bool = True

    @field_validator("token_expiry_hours", mode="before")
    @classmethod
    def clamp_token_expiry(cls, value: object) -> int:
        """Clamp token expiry into the supported 1-168 hour window."""
        hours = int(value)  # type: ignore[call-overload]
        return max(MIN_TOKEN_EXPIRY_HOURS, min(MAX_TOKEN_EXPIRY_HOURS, hours))

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants and production requirements.

        Checks:
        - Redirect decode depth within 0..MAX_REDIRECT_DECODE_DEPTH
        - Log capacity and cleanup interval positive
        - SameSite=None requires Secure flag (browser requirement)
        - Production: no default DB password, AUTH_SECRET set and long
          enough, INTERNAL_API_KEY set
        """
        if not 0 <= self.redirect_decode_depth <= MAX_REDIRECT_DECODE_DEPTH:
            msg = (
                "REDIRECT_DECODE_DEPTH must be between 0 and "
                f"{MAX_REDIRECT_DECODE_DEPTH}. Got: {self.redirect_decode_depth}"
            )
            raise ValueError(msg)

        if self.log_capacity < 1:
            msg = f"LOG_CAPACITY must be positive. Got: {self.log_capacity}"
            raise ValueError(msg)

        if self.cleanup_interval_seconds < 1:
            msg = (
                "CLEANUP_INTERVAL_SECONDS must be positive. "
                f"Got: {self.cleanup_interval_seconds}"
            )
            raise ValueError(msg)

        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production. Generate with: "
                    'python -c "import secrets; print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

            if not self.internal_api_key.get_secret_value():
                msg = "INTERNAL_API_KEY must be set in production."
                raise ValueError(msg)

        return self

