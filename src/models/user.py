"""User accounts and role assignments."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, JSONType, TimestampMixin


class UserRoleType(enum.Enum):
    """Roles that map onto the static permission table."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    USER = "USER"
    CLIENT_VIEWER = "CLIENT_VIEWER"
    INVOICE_MANAGER = "INVOICE_MANAGER"
    CREDITOR_MANAGER = "CREDITOR_MANAGER"
    READ_ONLY = "READ_ONLY"


class User(Base, TimestampMixin):
    """A freelancer or staff account that can sign in."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime)

    roles: Mapped[list["UserRole"]] = relationship(
        back_populates="user",
        foreign_keys="UserRole.user_id",
    )


class UserRole(Base, TimestampMixin):
    """Assignment of a role to a user, optionally scoped and time-limited.

    A scoped role (``scope_type``/``scope_id``) only grants its permissions
    for the resource with that id.
    """

    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[UserRoleType] = mapped_column(Enum(UserRoleType), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    scope_type: Mapped[str | None] = mapped_column(String(50))
    scope_id: Mapped[str | None] = mapped_column(String(100))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))

    user: Mapped["User"] = relationship(back_populates="roles", foreign_keys=[user_id])
