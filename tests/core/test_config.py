"""Configuration parsing tests."""

import pytest

from src.core.config import DEFAULT_CORS_ORIGINS, Settings

DATABASE_URL = "postgresql+asyncpg://zzp@localhost:5432/zzp_trust"


def test_admin_emails_accept_csv(monkeypatch) -> None:
    """CSV string in env parses into lower-cased addresses."""
    monkeypatch.setenv("ADMIN_EMAILS", "Eigenaar@ZZPTrust.nl, beheer@zzptrust.nl")
    cfg = Settings(database_url=DATABASE_URL)
    assert cfg.admin_emails == ["eigenaar@zzptrust.nl", "beheer@zzptrust.nl"]


def test_admin_emails_accept_json_array(monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_EMAILS", '["eigenaar@zzptrust.nl","beheer@zzptrust.nl"]')
    cfg = Settings(database_url=DATABASE_URL)
    assert cfg.admin_emails == ["eigenaar@zzptrust.nl", "beheer@zzptrust.nl"]


def test_cors_origins_dedupe_and_strip_quotes(monkeypatch) -> None:
    monkeypatch.setenv(
        "CORS_ORIGINS",
        "'https://app.zzptrust.nl', https://app.zzptrust.nl,https://zzptrust.nl",
    )
    cfg = Settings(database_url=DATABASE_URL)
    assert cfg.cors_origins == ["https://app.zzptrust.nl", "https://zzptrust.nl"]


def test_empty_cors_origins_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "  ")
    cfg = Settings(database_url=DATABASE_URL)
    assert cfg.cors_origins == DEFAULT_CORS_ORIGINS


def test_json_object_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_EMAILS", '{"admin": "eigenaar@zzptrust.nl"}')
    with pytest.raises(ValueError):
        Settings(database_url=DATABASE_URL)


def test_registry_defaults() -> None:
    cfg = Settings(database_url=DATABASE_URL)
    assert cfg.kvk_cache_ttl_seconds == 900
    assert cfg.btw_cache_ttl_seconds == 1800
    assert cfg.kvk_rate_limit_per_minute == 100
    assert cfg.statutory_interest_rate == 12.0
    assert cfg.invoice_number_prefix == "INV"
