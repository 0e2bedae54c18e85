"""Tests for structured logging configuration."""

from decimal import Decimal

import structlog

from src.core.config import settings
from src.core.logging import (
    _add_context_vars,
    _orjson_serializer,
    client_id_ctx,
    configure_logging,
    request_id_ctx,
    user_id_ctx,
)


def _reset_structlog() -> None:
    """Reset structlog defaults to avoid test cross-talk."""
    structlog.reset_defaults()


def _renderers() -> list[object]:
    return structlog.get_config()["processors"]


def test_configure_logging_uses_json_outside_development() -> None:
    """Default to JSON in production when no format override is set."""
    original_env = settings.environment
    original_format = settings.log_format

    try:
        settings.environment = "production"
        settings.log_format = None
        configure_logging()

        processors = _renderers()
        assert any(
            isinstance(processor, structlog.processors.JSONRenderer)
            for processor in processors
        )
        assert any(
            isinstance(processor, structlog.processors.EventRenamer)
            for processor in processors
        )
    finally:
        settings.environment = original_env
        settings.log_format = original_format
        _reset_structlog()


def test_configure_logging_console_override_in_production() -> None:
    """log_format=console wins over the environment default."""
    original_env = settings.environment
    original_format = settings.log_format

    try:
        settings.environment = "production"
        settings.log_format = "console"
        configure_logging()

        processors = _renderers()
        assert any(
            isinstance(processor, structlog.dev.ConsoleRenderer)
            for processor in processors
        )
        assert not any(
            isinstance(processor, structlog.processors.JSONRenderer)
            for processor in processors
        )
    finally:
        settings.environment = original_env
        settings.log_format = original_format
        _reset_structlog()


def test_context_vars_are_added_to_events() -> None:
    tokens = [
        request_id_ctx.set("req-1"),
        user_id_ctx.set(7),
        client_id_ctx.set(12),
    ]
    try:
        event = _add_context_vars(None, "info", {"event": "client_created"})
    finally:
        client_id_ctx.reset(tokens[2])
        user_id_ctx.reset(tokens[1])
        request_id_ctx.reset(tokens[0])

    assert event == {
        "event": "client_created",
        "request_id": "req-1",
        "user_id": 7,
        "client_id": 12,
    }


def test_context_vars_do_not_override_explicit_ids() -> None:
    token = user_id_ctx.set(7)
    try:
        event = _add_context_vars(None, "info", {"event": "role_assigned", "user_id": 3})
    finally:
        user_id_ctx.reset(token)

    assert event["user_id"] == 3


def test_serializer_handles_decimals() -> None:
    assert _orjson_serializer({"amount": Decimal("12.50")}) == '{"amount":"12.50"}'
