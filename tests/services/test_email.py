"""Tests for email rendering and the email log."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.email import EmailStatus, EmailType
from src.services import email as email_service
from src.services.email import (
    EmailTemplate,
    confirmation_url,
    mark_confirmation_clicked,
    render_email,
    send_email,
)


def test_confirmation_email() -> None:
    url = confirmation_url("abc123")
    subject, body = render_email(
        EmailType.CLIENT_CONFIRMATION,
        {"client_name": "Anna de Vries", "confirmation_url": url, "expires_hours": 24},
    )

    assert subject == "Bevestig uw registratie bij ZZP Trust"
    assert url.endswith("/confirm-email?token=abc123")
    assert f'href="{url}"' in body
    assert "Hallo Anna de Vries" in body
    assert "24 uur geldig" in body


def test_values_are_html_escaped() -> None:
    _, body = render_email(
        EmailType.REJECTION_NOTIFICATION,
        {"client_name": "<script>", "reason": "KvK & BTW ontbreken"},
    )

    assert "&lt;script&gt;" in body
    assert "KvK &amp; BTW ontbreken" in body


def test_admin_notification_lists_checks() -> None:
    subject, body = render_email(
        EmailType.ADMIN_NOTIFICATION,
        {
            "client_name": "Anna de Vries",
            "client_email": "anna@devries-advies.nl",
            "company_name": "De Vries Advies B.V.",
            "kvk_number": "12345678",
            "vat_number": None,
            "checks": {"kvk": True, "btw": False},
        },
    )

    assert subject.startswith("Nieuwe klant wacht op goedkeuring")
    assert "kvk: in orde" in body
    assert "btw: niet gevalideerd" in body
    assert "<strong>BTW:</strong> -" in body


@pytest.mark.asyncio
async def test_send_email_is_logged(db_session: AsyncSession) -> None:
    log = await send_email(
        db_session,
        EmailType.APPROVAL_NOTIFICATION,
        "anna@devries-advies.nl",
        {"client_name": "Anna de Vries", "notes": "Welkom"},
    )

    assert log.id is not None
    assert log.status == EmailStatus.SENT
    assert log.sent_at is not None
    assert log.subject == "Uw account is goedgekeurd - ZZP Trust"


@pytest.mark.asyncio
async def test_render_failure_is_logged_as_failed(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setitem(
        email_service.TEMPLATES,
        EmailType.APPROVAL_NOTIFICATION,
        EmailTemplate("Goedgekeurd", "missing.html.j2"),
    )

    log = await send_email(
        db_session, EmailType.APPROVAL_NOTIFICATION, "anna@devries-advies.nl", {}
    )

    assert log.status == EmailStatus.FAILED
    assert log.subject == "Error: APPROVAL_NOTIFICATION"
    assert "missing.html.j2" in log.error_message


@pytest.mark.asyncio
async def test_confirmation_click_is_recorded(db_session: AsyncSession) -> None:
    await send_email(
        db_session,
        EmailType.CLIENT_CONFIRMATION,
        "anna@devries-advies.nl",
        {"client_name": "Anna", "confirmation_url": confirmation_url("tok"), "expires_hours": 24},
        confirmation_token="tok",
    )

    log = await mark_confirmation_clicked(db_session, "tok")

    assert log is not None
    assert log.status == EmailStatus.CLICKED
    assert log.confirmed_at is not None
    assert await mark_confirmation_clicked(db_session, "other") is None
