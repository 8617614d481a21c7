"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    simulate_latency: bool = Field(
        True,
        description="Add a random processing delay to the demo market data generators",
    )
    warm_cache_on_startup: bool = Field(
        False,
        description="Replay the popular GET routes through the pipeline on startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window policies, one per route class."""

    enabled: bool = Field(
        True,
        description="Enable per-client rate limiting",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    standard_window_seconds: int = Field(900, ge=1)
    standard_max_requests: int = Field(100, ge=1)
    price_window_seconds: int = Field(60, ge=1)
    price_max_requests: int = Field(120, ge=1)
    history_window_seconds: int = Field(60, ge=1)
    history_max_requests: int = Field(20, ge=1)
    sweep_interval_seconds: float = Field(
        60.0,
        gt=0,
        description="How often stale client windows are purged",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """TTL per cache class, in seconds."""

    prices_ttl_seconds: int = Field(30, ge=1)
    single_price_ttl_seconds: int = Field(15, ge=1)
    history_ttl_seconds: int = Field(300, ge=1)
    markets_ttl_seconds: int = Field(120, ge=1)
    trending_ttl_seconds: int = Field(600, ge=1)
    default_ttl_seconds: int = Field(60, ge=1)
    sweep_interval_seconds: float = Field(
        60.0,
        gt=0,
        description="How often expired entries are purged",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class MetricsSettings(BaseSettings):
    """Rolling metrics aggregation."""

    buffer_size: int = Field(
        1000,
        ge=1,
        description="Number of response-time samples kept for the rolling average",
    )
    flush_every: int = Field(
        100,
        ge=1,
        description="Emit a snapshot after this many recorded requests",
    )
    flush_interval_seconds: float = Field(
        60.0,
        gt=0,
        description="Emit a snapshot on this interval regardless of traffic",
    )
    rps_window_seconds: float = Field(
        60.0,
        gt=0,
        description="Normalisation window used for requests_per_second",
    )
    request_log_capacity: int = Field(
        10000,
        ge=1,
        description="Maximum number of request log entries retained in memory",
    )

    model_config = SettingsConfigDict(
        env_prefix="METRICS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Either 'json' or 'plain'")
    request_id_header: str = Field("X-Request-ID")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
