"""Transactional email rendering and logging.

Messages are rendered from the Jinja2 templates next to this module and
recorded in ``email_logs``. Handing the rendered message to an SMTP relay
happens outside this service.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.logging import get_logger
from src.models.base import utcnow
from src.models.email import EmailLog, EmailStatus, EmailType

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

BRAND_NAME = "ZZP Trust"


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    filename: str


TEMPLATES: dict[EmailType, EmailTemplate] = {
    EmailType.CLIENT_CONFIRMATION: EmailTemplate(
        "Bevestig uw registratie bij {brand}", "client_confirmation.html.j2"
    ),
    EmailType.ADMIN_NOTIFICATION: EmailTemplate(
        "Nieuwe klant wacht op goedkeuring - {brand}", "admin_notification.html.j2"
    ),
    EmailType.APPROVAL_NOTIFICATION: EmailTemplate(
        "Uw account is goedgekeurd - {brand}", "approval_notification.html.j2"
    ),
    EmailType.REJECTION_NOTIFICATION: EmailTemplate(
        "Aanvullende informatie vereist - {brand}", "rejection_notification.html.j2"
    ),
}

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "j2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_email(email_type: EmailType, data: dict[str, Any]) -> tuple[str, str]:
    """Render ``(subject, body)`` for an email type."""
    template = TEMPLATES[email_type]
    context = {
        "brand_name": BRAND_NAME,
        "platform_url": settings.app_base_url.rstrip("/"),
        "support_email": settings.admin_notification_email,
        **data,
    }
    body = _env.get_template(template.filename).render(**context)
    return template.subject.format(brand=BRAND_NAME), body


def confirmation_url(token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/confirm-email?token={token}"


async def send_email(
    db: AsyncSession,
    email_type: EmailType,
    recipient: str,
    data: dict[str, Any],
    *,
    client_id: int | None = None,
    confirmation_token: str | None = None,
) -> EmailLog:
    """Render an email and record it in the email log.

    Rendering failures are recorded as a FAILED entry instead of raising, so
    a broken template never rolls back the workflow step that sent it.
    """
    try:
        subject, body = render_email(email_type, data)
    except TemplateError as exc:
        logger.error(
            "email_render_failed",
            email_type=email_type.value,
            client_id=client_id,
            error=str(exc),
        )
        log = EmailLog(
            client_id=client_id,
            email_type=email_type,
            recipient=recipient,
            subject=f"Error: {email_type.value}",
            body="",
            status=EmailStatus.FAILED,
            error_message=str(exc),
        )
        db.add(log)
        await db.flush()
        return log

    log = EmailLog(
        client_id=client_id,
        email_type=email_type,
        recipient=recipient,
        subject=subject,
        body=body,
        status=EmailStatus.SENT,
        confirmation_token=confirmation_token,
        sent_at=utcnow(),
    )
    db.add(log)
    await db.flush()
    logger.info(
        "email_sent",
        email_type=email_type.value,
        client_id=client_id,
        email_log_id=log.id,
    )
    return log


async def mark_confirmation_clicked(db: AsyncSession, token: str) -> EmailLog | None:
    """Mark the confirmation email carrying ``token`` as clicked."""
    result = await db.execute(
        select(EmailLog)
        .where(
            EmailLog.confirmation_token == token,
            EmailLog.email_type == EmailType.CLIENT_CONFIRMATION,
            EmailLog.status.in_([EmailStatus.SENT, EmailStatus.DELIVERED]),
        )
        .order_by(EmailLog.id.desc())
        .limit(1)
    )
    log = result.scalar_one_or_none()
    if log is not None:
        log.status = EmailStatus.CLICKED
        log.confirmed_at = utcnow()
    return log
