"""Client-related SQLAlchemy models."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, JSONType, TimestampMixin, utcnow


class OnboardingStatus(enum.Enum):
    """Where a client is in the onboarding workflow."""

    PENDING_VALIDATION = "PENDING_VALIDATION"
    EMAIL_SENT = "EMAIL_SENT"
    CLIENT_CONFIRMED = "CLIENT_CONFIRMED"
    ADMIN_REVIEW = "ADMIN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class OnboardingStep(enum.Enum):
    """Wizard steps a client passes through."""

    BASIC_INFO = "BASIC_INFO"
    BUSINESS_DETAILS = "BUSINESS_DETAILS"
    BANKING_INFO = "BANKING_INFO"
    VERIFICATION = "VERIFICATION"
    COMPLETED = "COMPLETED"


class ApprovalStatus(enum.Enum):
    """Admin decision on a client."""

    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalPriority(enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ValidationType(enum.Enum):
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"


class ValidationStatus(enum.Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class Client(Base, TimestampMixin):
    """A customer of a freelancer, onboarded before it can be invoiced.

    ``version`` is maintained by the ORM; an UPDATE against a stale version
    raises ``StaleDataError``.
    """

    __tablename__ = "clients"
    __table_args__ = (
        UniqueConstraint("user_id", "kvk_number", name="uq_clients_user_kvk"),
        UniqueConstraint("user_id", "vat_number", name="uq_clients_user_vat"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50))
    company: Mapped[str | None] = mapped_column(String(200))
    kvk_number: Mapped[str | None] = mapped_column(String(8))
    vat_number: Mapped[str | None] = mapped_column(String(20))
    business_type: Mapped[str | None] = mapped_column(String(50))
    address: Mapped[str | None] = mapped_column(String(200))
    postal_code: Mapped[str | None] = mapped_column(String(10))
    city: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str] = mapped_column(String(2), default="NL", nullable=False)

    # Administrative contact
    contact_name: Mapped[str | None] = mapped_column(String(200))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(50))
    contact_department: Mapped[str | None] = mapped_column(String(100))

    # Banking
    iban: Mapped[str | None] = mapped_column(String(34))
    bank_name: Mapped[str | None] = mapped_column(String(100))
    account_holder: Mapped[str | None] = mapped_column(String(100))

    # Validation flags
    kvk_validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    kvk_validated_at: Mapped[datetime | None] = mapped_column(DateTime)
    btw_validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    btw_validated_at: Mapped[datetime | None] = mapped_column(DateTime)
    iban_validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    iban_validated_at: Mapped[datetime | None] = mapped_column(DateTime)
    email_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime)
    email_confirmation_token: Mapped[str | None] = mapped_column(
        String(64), unique=True
    )
    email_confirmation_expires_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Workflow
    onboarding_status: Mapped[OnboardingStatus] = mapped_column(
        Enum(OnboardingStatus),
        default=OnboardingStatus.PENDING_VALIDATION,
        nullable=False,
    )
    onboarding_step: Mapped[OnboardingStep] = mapped_column(
        Enum(OnboardingStep), default=OnboardingStep.BASIC_INFO, nullable=False
    )
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus), default=ApprovalStatus.PENDING_APPROVAL, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    approval_notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    # Invoicing
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    can_create_invoices: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    invoice_permission_granted_at: Mapped[datetime | None] = mapped_column(DateTime)
    invoice_permission_granted_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id")
    )
    total_invoiced: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    approvals: Mapped[list["ClientApproval"]] = relationship(
        back_populates="client", order_by="ClientApproval.id"
    )
    validations: Mapped[list["ClientValidation"]] = relationship(
        back_populates="client", order_by="ClientValidation.id"
    )


class ClientApproval(Base, TimestampMixin):
    """A request for an admin decision on a client, and that decision."""

    __tablename__ = "client_approvals"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus), default=ApprovalStatus.PENDING_APPROVAL, nullable=False
    )
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime)
    workflow_step: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[ApprovalPriority] = mapped_column(
        Enum(ApprovalPriority), default=ApprovalPriority.NORMAL, nullable=False
    )
    validation_checks: Mapped[dict | None] = mapped_column(JSONType)
    approval_notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    client: Mapped["Client"] = relationship(back_populates="approvals")


class ClientValidation(Base, TimestampMixin):
    """Outcome of one validation run over a client's identifiers."""

    __tablename__ = "client_validations"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False)
    validation_type: Mapped[ValidationType] = mapped_column(
        Enum(ValidationType), default=ValidationType.AUTOMATIC, nullable=False
    )
    status: Mapped[ValidationStatus] = mapped_column(
        Enum(ValidationStatus), default=ValidationStatus.PENDING, nullable=False
    )
    kvk_check: Mapped[dict | None] = mapped_column(JSONType)
    btw_check: Mapped[dict | None] = mapped_column(JSONType)
    iban_check: Mapped[dict | None] = mapped_column(JSONType)
    email_check: Mapped[dict | None] = mapped_column(JSONType)
    phone_check: Mapped[dict | None] = mapped_column(JSONType)
    address_check: Mapped[dict | None] = mapped_column(JSONType)
    overall_score: Mapped[float | None] = mapped_column(Float)
    findings: Mapped[list | None] = mapped_column(JSONType)
    requested_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))

    client: Mapped["Client"] = relationship(back_populates="validations")
