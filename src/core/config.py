"""Application configuration using Pydantic Settings."""

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str
    """PostgreSQL connection URL (asyncpg driver)."""

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL for registry caches, rate limits and breaker state."""

    # Error Tracking
    sentry_dsn: str | None = None
    """Sentry DSN for error tracking. Optional."""

    # Environment
    environment: str = "development"
    """Current environment (development, staging, production)."""

    debug: bool = False
    """Enable debug mode."""

    log_format: str | None = None
    """Logging format override (json or console). Defaults by environment."""

    # Sessions and accounts
    session_secret: str = "change-me-in-production"
    """Secret used to sign the session cookie."""

    session_max_age_seconds: int = 60 * 60 * 24 * 7

    bcrypt_rounds: int = 12
    """Work factor for password hashing."""

    login_rate_limit: str = "10/minute"
    """Per-address limit on login attempts."""

    # NoDecode prevents pydantic-settings from forcing JSON parsing at the
    # env-source layer, so we can accept either JSON arrays or CSV strings.
    admin_emails: Annotated[list[str], NoDecode] = []
    """The first of these to register becomes SUPER_ADMIN; the rest register as USER."""

    cors_origins: Annotated[list[str], NoDecode] = DEFAULT_CORS_ORIGINS

    # Email
    app_base_url: str = "http://localhost:3000"
    """Base URL used when building links in outgoing email."""

    admin_notification_email: str = "admin@zzp-trust.nl"
    email_sender: str = "ZZP Trust <noreply@zzp-trust.nl>"
    email_confirmation_ttl_hours: int = 24

    # KvK registry
    kvk_api_url: str = "https://api.overheid.io/openkvk"
    kvk_api_key: str | None = None
    kvk_cache_ttl_seconds: int = 15 * 60
    kvk_rate_limit_per_minute: int = 100
    kvk_timeout_seconds: float = 10.0
    kvk_batch_size: int = 5
    kvk_batch_delay_seconds: float = 1.0

    # BTW (VAT) registry
    btw_api_url: str = "https://www.btw-nummer-controle.nl/Api/Validate.asmx"
    btw_cache_ttl_seconds: int = 30 * 60
    btw_min_request_interval_seconds: float = 0.5
    btw_timeout_seconds: float = 10.0

    # Registry circuit breaker
    registry_breaker_fail_max: int = 5
    registry_breaker_reset_timeout: int = 30

    # Documents and invoices
    signature_expiry_hours: int = 48
    statutory_interest_rate: float = 12.0
    """Annual percentage charged on overdue invoices."""

    invoice_number_prefix: str = "INV"

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value: object) -> list[str]:
        """Parse admin emails from JSON array, CSV, or list."""
        return [item.lower() for item in _parse_list(value, "ADMIN_EMAILS", [])]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: object) -> list[str]:
        """Parse CORS origins from JSON array, CSV, or list."""
        return _parse_list(value, "CORS_ORIGINS", DEFAULT_CORS_ORIGINS)


def _parse_list(value: object, name: str, default: list[str]) -> list[str]:
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default.copy()

        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None

        if isinstance(decoded, list):
            return _normalize_items(decoded, default)
        if isinstance(decoded, str):
            text = decoded
        elif decoded is not None:
            raise ValueError(f"{name} must be a JSON array or comma-separated string.")

        # Fallback: comma-separated values
        return _normalize_items(text.split(","), default)

    if isinstance(value, (list, tuple, set)):
        return _normalize_items(value, default)

    raise ValueError(f"{name} must be a string, list, tuple, or set.")


def _normalize_items(values: Iterable[object], default: list[str]) -> list[str]:
    """Strip, dedupe and drop empty items while preserving declaration order."""
    normalized: list[str] = []
    for raw_item in values:
        item = str(raw_item).strip().strip("'").strip('"')
        if item and item not in normalized:
            normalized.append(item)

    if not normalized:
        return default.copy()
    return normalized


try:
    settings = Settings()
except Exception as exc:
    env_file = Path(".env")
    root_error = str(exc)
    suggestions = [
        "Ensure DATABASE_URL is set.",
        "ADMIN_EMAILS and CORS_ORIGINS accept either form:",
        '  1) ["admin@example.nl","owner@example.nl"]',
        "  2) admin@example.nl,owner@example.nl",
    ]

    raise RuntimeError(
        "Failed to initialize application settings. "
        f"Check environment variables in {env_file.resolve() if env_file.exists() else '.env'}.\n"
        + f"Error: {root_error}\n"
        + "\n".join(suggestions)
    ) from exc
