"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are split by concern (app, auth, cache, rate limiting, store, logging),
each with its own environment prefix, and composed into a single ``settings``.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production injects via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Service-wide metadata and switches."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    service_name: str = Field(
        "bus-tracking-api",
        description="Service name reported by the health endpoint",
    )
    version: str = Field(
        "1.0.0",
        description="Service version reported by the health endpoint",
    )
    cors_origins: str = Field(
        "*",
        description="Comma-separated list of allowed CORS origins",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class AuthSettings(BaseSettings):
    """Bearer token verification settings."""

    required: bool = Field(
        True,
        description="Whether bearer token authentication is enforced",
    )
    jwt_secret: str | None = Field(
        None,
        description="Shared secret (HS*) or public key (RS*) used to verify tokens",
    )
    jwt_algorithms: str = Field(
        "HS256",
        description="Comma-separated list of accepted JWT algorithms",
    )
    default_role: str = Field(
        "user",
        description="Role assigned when a token carries no role claim",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )

    @property
    def algorithms(self) -> list[str]:
        return [alg.strip() for alg in self.jwt_algorithms.split(",") if alg.strip()]


class CacheSettings(BaseSettings):
    """Redis connection target.

    Either ``REDIS_URL`` or ``REDIS_HOST`` (+ ``REDIS_PORT``) enables the cache.
    With neither set the cache stays permanently disconnected and every read
    is a miss.
    """

    url: str | None = Field(
        None,
        description="Full Redis connection URL (takes precedence over host/port)",
    )
    host: str | None = Field(
        None,
        description="Redis host, used when no URL is configured",
    )
    port: int = Field(
        6379,
        description="Redis port, used together with host",
    )
    db: int = Field(
        0,
        description="Redis logical database index for host/port connections",
    )
    password: str | None = Field(
        None,
        description="Redis password for host/port connections",
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Socket read/write timeout",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        2.0,
        description="Socket connect timeout",
        gt=0,
    )
    operation_timeout_seconds: float = Field(
        2.0,
        description="Upper bound for a single cache operation, including reconnect",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )

    @property
    def configured(self) -> bool:
        return bool(self.url or self.host)


class CacheTTLSettings(BaseSettings):
    """Per-entity cache lifetimes in seconds."""

    routes: int = Field(3600, ge=1, description="Public route listings")
    route_details: int = Field(3600, ge=1, description="Single route documents")
    live_buses: int = Field(30, ge=1, description="Live buses on a route")
    bus_details: int = Field(300, ge=1, description="Single bus documents")
    location: int = Field(60, ge=1, description="Latest bus location")
    search: int = Field(300, ge=1, description="Route search results")
    schedules: int = Field(1800, ge=1, description="Route schedules")

    model_config = SettingsConfigDict(
        env_prefix="CACHE_TTL_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Tiered rate limiting configuration (per client IP)."""

    enabled: bool = Field(
        True,
        description="Enable tiered rate limiting",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on allowed responses",
    )
    window_seconds: int = Field(
        60,
        description="Window length shared by all tiers",
        ge=1,
    )
    public_max_requests: int = Field(100, ge=1, description="PUBLIC tier budget per window")
    search_max_requests: int = Field(30, ge=1, description="SEARCH tier budget per window")
    operator_max_requests: int = Field(200, ge=1, description="OPERATOR tier budget per window")
    admin_max_requests: int = Field(300, ge=1, description="ADMIN tier budget per window")
    cleanup_interval_seconds: float = Field(
        60.0,
        description="How often the in-memory counter store purges expired keys",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Document store selection and table names."""

    backend: str = Field(
        "memory",
        description="Document store backend: memory or dynamodb",
    )
    region: str = Field(
        "us-east-1",
        description="AWS region for DynamoDB",
    )
    endpoint_url: str | None = Field(
        None,
        description="Custom DynamoDB endpoint (e.g., DynamoDB Local)",
    )
    routes_table: str = Field("BusRoutes")
    buses_table: str = Field("Buses")
    locations_table: str = Field("BusLocations")
    schedules_table: str = Field("BusSchedules")

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after this size (0 disables)")
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Request correlation header")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if values are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    cache_ttl: CacheTTLSettings = Field(default_factory=CacheTTLSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
