"""Centralized configuration management using Pydantic Settings.

This module provides typed configuration for all application settings,
loaded from environment variables with sensible defaults.

Usage:
    from groupdate.config import get_settings
    settings = get_settings()
    ttl = settings.cache.view_ttl_sec
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes")
    return bool(v)


class RedisSettings(BaseSettings):
    """Redis connection configuration (shared cache tier and realtime bus)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str = Field(default="", description="Redis password")
    max_connections: int = Field(default=200, description="Maximum pool connections")
    pool_timeout_sec: float = Field(default=5.0, description="Pool timeout in seconds")
    health_check_interval: int = Field(default=30, description="Health check interval in seconds")
    retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    socket_timeout: float = Field(default=2.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(default=2.0, description="Socket connect timeout in seconds")


class PostgresSettings(BaseSettings):
    """PostgreSQL connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default="postgres", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="devuser", description="PostgreSQL user")
    password: str = Field(default="", description="PostgreSQL password")
    database: str = Field(
        default="devdb",
        validation_alias="POSTGRES_DB",
        description="Database name",
    )
    pool_min_size: int = Field(default=2, description="Minimum pool size")
    pool_max_size: int = Field(default=10, description="Maximum pool size")
    pool_timeout: int = Field(default=30, description="Timeout for acquiring connections")
    pool_max_lifetime: int = Field(
        default=1800, description="Maximum connection lifetime in seconds"
    )
    pool_max_idle: int = Field(
        default=300, description="Maximum idle time before closing connection"
    )
    pool_reconnect_timeout: int = Field(
        default=300, description="Reconnection timeout in seconds"
    )

    def get_dsn(self) -> str:
        """Generate PostgreSQL DSN connection string."""
        return (
            f"host={self.host} port={self.port} user={self.user} "
            f"password={self.password} dbname={self.database} sslmode=disable"
        )


class CacheSettings(BaseSettings):
    """Composite event view cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", extra="ignore")

    view_ttl_sec: int = Field(default=120, ge=1, description="TTL of cached event views")
    local_max_entries: int = Field(default=1000, ge=1, description="Bound of the in-process fallback tier")
    key_prefix: str = Field(default="event_view", description="Redis key namespace for views")


class PhaseSettings(BaseSettings):
    """Phase state machine configuration."""

    model_config = SettingsConfigDict(env_prefix="PHASE_", extra="ignore")

    sweep_enabled: bool = Field(default=True, description="Run the periodic deadline sweep")
    sweep_interval_sec: float = Field(default=60.0, gt=0, description="Seconds between sweeps")
    allow_override: bool = Field(default=False, description="Enable the audited phase override")

    @field_validator("sweep_enabled", "allow_override", mode="before")
    @classmethod
    def parse_flags(cls, v):
        return _parse_bool(v)


class AuthSettings(BaseSettings):
    """Credential sources and cookie configuration."""

    model_config = SettingsConfigDict(env_prefix="AUTH_", extra="ignore")

    user_header: str = Field(
        default="X-Authenticated-User",
        description="Header set by the upstream auth gateway",
    )
    session_header: str = Field(default="X-Session-Token", description="Session token header")
    session_cookie_prefix: str = Field(default="gd_session_")
    person_cookie_prefix: str = Field(default="selected-person-")
    cookie_max_age_sec: int = Field(default=30 * 24 * 60 * 60)
    cookie_secure: bool = Field(default=False)
    cron_secret: str = Field(default="", description="Bearer secret for the sweeper route")
    token_secret: str = Field(
        default="dev-token-secret",
        description="HMAC key for host creation tokens",
    )

    @field_validator("cookie_secure", mode="before")
    @classmethod
    def parse_secure(cls, v):
        return _parse_bool(v)


class CorsSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    origins_raw: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )
    origins_regex: str = Field(
        default="",
        validation_alias="CORS_ORIGINS_REGEX",
        description="Regex pattern for origins",
    )

    @property
    def origins(self) -> list[str]:
        """Parse comma-separated origins into list."""
        return [o.strip() for o in self.origins_raw.split(",") if o.strip()]

    @property
    def allow_credentials(self) -> bool:
        """Credentials not allowed with wildcard origins."""
        return self.origins != ["*"] and not self.origins_regex


class DebugSettings(BaseSettings):
    """Debug flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    request: bool = Field(default=False, alias="request_debug")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class FeatureSettings(BaseSettings):
    """Feature flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    database: bool = Field(default=True, alias="enable_db")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class Settings:
    """Main application settings combining all configuration sections.

    This is not a BaseSettings subclass to avoid env var conflicts.
    Each subsetting is loaded independently with its own prefix.
    """

    def __init__(self) -> None:
        self.redis = RedisSettings()
        self.postgres = PostgresSettings()
        self.cache = CacheSettings()
        self.phase = PhaseSettings()
        self.auth = AuthSettings()
        self.cors = CorsSettings()
        self.debug = DebugSettings()
        self.features = FeatureSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
