"""
Centralized configuration for the Shopify sync engine.

Configuration is loaded from environment variables (and a local .env file)
with sensible defaults.

Usage:
    from shopsync.config import config

    delay = config.sync.startup_delay_seconds
    secret = config.shopify.client_secret
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class ShopifyConfig:
    """Shopify Admin REST API configuration."""

    client_id: str = field(default_factory=lambda: os.getenv("SHOPIFY_CLIENT_ID", ""))
    client_secret: str = field(default_factory=lambda: os.getenv("SHOPIFY_CLIENT_SECRET", ""))
    api_version: str = field(default_factory=lambda: os.getenv("SHOPIFY_API_VERSION", "2025-01"))
    request_timeout: float = field(default_factory=lambda: _env_float("SHOPIFY_REQUEST_TIMEOUT", 30.0))
    page_limit: int = 250
    page_delay: float = 0.5  # politeness pause between pages
    default_retry_after: float = 5.0  # used when a 429 has no Retry-After
    max_rate_limit_retries: int = 10


@dataclass(frozen=True)
class SyncConfig:
    """Scheduler and orchestrator configuration."""

    startup_delay_seconds: float = field(default_factory=lambda: _env_float("SYNC_STARTUP_DELAY", 30.0))
    interval_hours: float = field(default_factory=lambda: _env_float("SYNC_INTERVAL_HOURS", 6.0))
    manual_cooldown_seconds: float = field(default_factory=lambda: _env_float("SYNC_COOLDOWN_SECONDS", 60.0))
    error_summary_limit: int = 500


@dataclass(frozen=True)
class StoreConfig:
    """Local DuckDB store configuration."""

    db_path: str = field(
        default_factory=lambda: os.getenv(
            "SHOPSYNC_DB_PATH", str(PROJECT_ROOT / "data" / "shopsync.duckdb")
        )
    )


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: os.getenv("LOG_FORMAT", "text") == "json")


@dataclass(frozen=True)
class WebConfig:
    """Web boundary configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("WEB_PORT", 8080))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()

VERSION = config.version


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: AppConfig = None, require_webhooks: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Args:
        app_config: Configuration to check (defaults to the global one)
        require_webhooks: If True, the shared client secret must be set

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors = []

    if require_webhooks and not cfg.shopify.client_secret:
        errors.append("SHOPIFY_CLIENT_SECRET is required but not set")

    if cfg.sync.interval_hours <= 0:
        errors.append("SYNC_INTERVAL_HOURS must be positive")

    if cfg.sync.startup_delay_seconds < 0:
        errors.append("SYNC_STARTUP_DELAY must not be negative")

    if cfg.sync.manual_cooldown_seconds < 0:
        errors.append("SYNC_COOLDOWN_SECONDS must not be negative")

    if cfg.shopify.request_timeout <= 0:
        errors.append("SHOPIFY_REQUEST_TIMEOUT must be positive")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
