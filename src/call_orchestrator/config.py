"""Settings, read from the environment (and ``.env``) with pydantic-settings.

Each concern has its own settings class and env prefix, e.g. ``TELEPHONY_AUTH_TOKEN``
or ``QUOTA_DEFAULT_DAILY_LIMIT``. Use ``get_settings()``.
"""

import logging
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DATABASE_SCHEMES = (
    "postgresql://",
    "postgresql+psycopg2://",
    "postgresql+asyncpg://",
    "sqlite+aiosqlite://",
)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class TelephonyProviderType(str, Enum):
    TWILIO = "twilio"
    MOCK = "mock"


class DatabaseSettings(BaseSettings):
    """
    Database connection.

    An in-memory SQLite database lives on a single connection shared by every
    session, so concurrent sessions see each other's uncommitted writes and
    row locks do not apply. Use a file URL or PostgreSQL to run more than one
    request at a time.
    """

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)

    url: str = Field(..., description="Database connection URL")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    pool_recycle: int = Field(default=3600, description="Pool recycle time in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")
    auto_create_tables: bool = Field(
        default=False, description="Create tables on startup (local development and tests)"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(SUPPORTED_DATABASE_SCHEMES):
            raise ValueError(
                f"Database URL must start with one of: {', '.join(SUPPORTED_DATABASE_SCHEMES)}"
            )
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_sqlite_memory(self) -> bool:
        return self.is_sqlite and (":memory:" in self.url or "mode=memory" in self.url)


class RedisSettings(BaseSettings):
    """Redis backs the rate limiter and the Celery broker."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", case_sensitive=False)

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    password: Optional[str] = Field(default=None, description="Redis password")
    decode_responses: bool = Field(default=True, description="Decode responses as strings")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(default=5, description="Socket connect timeout in seconds")


class TelephonySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TELEPHONY_", case_sensitive=False)

    provider: TelephonyProviderType = Field(
        default=TelephonyProviderType.TWILIO, description="Telephony provider backend"
    )
    account_sid: Optional[str] = Field(default=None, description="Twilio account SID")
    auth_token: Optional[str] = Field(default=None, description="Twilio auth token")
    from_number: Optional[str] = Field(default=None, description="Caller ID for outbound calls")
    validate_signatures: bool = Field(
        default=True, description="Reject webhooks without a valid X-Twilio-Signature"
    )
    recording_max_length: int = Field(
        default=280, ge=1, description="Maximum length of the answer recording in seconds"
    )

    @property
    def is_configured(self) -> bool:
        """Credentials and a caller ID are all present."""
        return bool(self.account_sid and self.auth_token and self.from_number)


class QuotaSettings(BaseSettings):
    """Ceilings for accounts without their own limits."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_", case_sensitive=False)

    default_daily_limit: int = Field(default=100, ge=0, description="Calls per account per day")
    default_monthly_limit: int = Field(
        default=3000, ge=0, description="Calls per account per calendar month"
    )


class RateLimitSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", case_sensitive=False)

    enabled: bool = Field(default=True, description="Enable Redis-backed rate limiting")
    calls_per_minute: int = Field(default=100, ge=1, description="Requests per API key per window")
    window_seconds: int = Field(default=60, ge=1, description="Sliding window length in seconds")


class DispatchSettings(BaseSettings):
    """Batch pacing and background timing."""

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", case_sensitive=False)

    max_batch_size: int = Field(default=50, ge=1, description="Maximum calls per batch request")
    batch_delay_ms: int = Field(default=100, ge=0, description="Delay between batch dispatches")
    recording_fetch_delay_seconds: float = Field(
        default=2.0, ge=0, description="Grace delay before fetching a recording artifact"
    )
    recording_fetch_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for recording downloads"
    )
    scheduler_interval_seconds: int = Field(
        default=30, ge=1, description="How often scheduled calls are released"
    )


class StorageSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_", case_sensitive=False)

    recordings_dir: str = Field(default="recordings", description="Directory for recording files")


class NotificationSettings(BaseSettings):
    """Where to announce downloaded recordings. Disabled without a backend URL."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_", case_sensitive=False)

    backend_url: Optional[str] = Field(default=None, description="Backend base URL")
    signing_secret: Optional[str] = Field(
        default=None, description="HMAC-SHA256 secret used to sign notifications"
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="Notification request timeout")

    @property
    def is_enabled(self) -> bool:
        return bool(self.backend_url)


class CorsSettings(BaseSettings):
    """Comma-separated lists, e.g. ``CORS_ORIGINS=https://a.example,https://b.example``."""

    model_config = SettingsConfigDict(env_prefix="CORS_", case_sensitive=False)

    origins_str: str = Field(default="http://localhost:3000", alias="origins")
    allow_credentials: bool = Field(default=False)
    allow_methods_str: str = Field(default="GET,POST,OPTIONS", alias="allow_methods")
    allow_headers_str: str = Field(
        default="Content-Type,X-API-Key,X-Request-ID", alias="allow_headers"
    )
    max_age: int = Field(default=3600, description="Preflight cache max age in seconds")

    @property
    def origins(self) -> List[str]:
        return _split_csv(self.origins_str)

    @property
    def allow_methods(self) -> List[str]:
        return _split_csv(self.allow_methods_str)

    @property
    def allow_headers(self) -> List[str]:
        return _split_csv(self.allow_headers_str)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="call-orchestrator")
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    api_v1_prefix: str = Field(default="/api/v1")
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL; provider callbacks are built from it",
    )
    internal_api_key: Optional[str] = Field(
        default=None,
        alias="INTERNAL_API_KEY",
        description="Shared secret for internal endpoints (X-Internal-API-Key)",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    telephony: TelephonySettings = Field(default_factory=TelephonySettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Unknown environment names fall back to development."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def validate_production_settings(self) -> None:
        """Refuse configurations that would be unsafe against real callers."""
        if not self.is_production:
            return
        if self.debug:
            raise ValueError("DEBUG must be False in production")
        if self.telephony.provider == TelephonyProviderType.MOCK:
            raise ValueError("TELEPHONY_PROVIDER=mock is not allowed in production")
        if self.telephony.validate_signatures and not self.telephony.auth_token:
            raise ValueError(
                "TELEPHONY_AUTH_TOKEN is required in production to validate webhook signatures"
            )
        if not self.public_base_url.startswith("https://"):
            logging.warning("PUBLIC_BASE_URL is not https; Twilio callbacks will be sent in clear")
        if self.database.auto_create_tables:
            logging.warning("DATABASE_AUTO_CREATE_TABLES is enabled in production")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """The process-wide settings. Invalid production settings fail fast."""
    global _settings
    if _settings is None:
        _settings = Settings()
        try:
            _settings.validate_production_settings()
        except ValueError as e:
            logging.error(f"Configuration validation failed: {e}")
            raise
    return _settings


settings = get_settings()
