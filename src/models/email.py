"""Outbound email log."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class EmailType(enum.Enum):
    CLIENT_CONFIRMATION = "CLIENT_CONFIRMATION"
    ADMIN_NOTIFICATION = "ADMIN_NOTIFICATION"
    APPROVAL_NOTIFICATION = "APPROVAL_NOTIFICATION"
    REJECTION_NOTIFICATION = "REJECTION_NOTIFICATION"


class EmailStatus(enum.Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    OPENED = "OPENED"
    CLICKED = "CLICKED"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"


class EmailLog(Base, TimestampMixin):
    """A rendered email and its delivery status."""

    __tablename__ = "email_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"))
    email_type: Mapped[EmailType] = mapped_column(Enum(EmailType), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[EmailStatus] = mapped_column(
        Enum(EmailStatus), default=EmailStatus.SENT, nullable=False
    )
    confirmation_token: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime)
