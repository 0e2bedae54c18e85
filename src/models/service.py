"""Standard service catalogue model."""

from decimal import Decimal

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.invoice import UnitType


class StandardService(Base, TimestampMixin):
    """A reusable invoice line kept in a user's catalogue."""

    __tablename__ = "standard_services"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(50))
    default_rate: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    unit_type: Mapped[UnitType] = mapped_column(
        Enum(UnitType), default=UnitType.HOURS, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
