"""Append-only audit log with hash chaining."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, JSONType, utcnow


class AuditAction(enum.Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    VALIDATE = "VALIDATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    SECURITY_EVENT = "SECURITY_EVENT"


class AuditLog(Base):
    """One audited action.

    ``entry_hash`` is the SHA-256 of this entry's content together with
    ``previous_hash``, the hash of the entry before it.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity", "entity_id"),
        Index("ix_audit_logs_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    entity: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    old_values: Mapped[dict | None] = mapped_column(JSONType)
    new_values: Mapped[dict | None] = mapped_column(JSONType)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    context: Mapped[str | None] = mapped_column(Text)
    previous_hash: Mapped[str | None] = mapped_column(String(64))
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )


CHAIN_HEAD_ID = 1


class AuditChainHead(Base):
    """Single row holding the hash of the newest audit entry.

    Appends update this row before reading it, which takes its write lock,
    so concurrent writers queue up instead of linking to the same entry.
    """

    __tablename__ = "audit_chain_head"

    id: Mapped[int] = mapped_column(primary_key=True)
    latest_hash: Mapped[str | None] = mapped_column(String(64))
    length: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


@event.listens_for(AuditChainHead.__table__, "after_create")
def _seed_chain_head(target, connection, **kw) -> None:
    connection.execute(target.insert().values(id=CHAIN_HEAD_ID, length=0))
