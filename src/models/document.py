"""Legal documents and electronic signatures."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, JSONType, TimestampMixin


class LegalDocumentType(enum.Enum):
    TERMS_AND_CONDITIONS = "TERMS_AND_CONDITIONS"
    PRIVACY_POLICY = "PRIVACY_POLICY"
    PROCESSING_AGREEMENT = "PROCESSING_AGREEMENT"
    SERVICE_AGREEMENT = "SERVICE_AGREEMENT"
    OTHER = "OTHER"


class DocumentStatus(enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class SignatureType(enum.Enum):
    DRAWN = "DRAWN"
    TYPED = "TYPED"
    UPLOADED = "UPLOADED"
    DIGITAL_CERTIFICATE = "DIGITAL_CERTIFICATE"


class SignatureStatus(enum.Enum):
    PENDING = "PENDING"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ComplianceLevel(enum.Enum):
    STANDARD = "STANDARD"
    ADVANCED = "ADVANCED"
    QUALIFIED = "QUALIFIED"


class VerificationType(enum.Enum):
    HASH_VERIFICATION = "HASH_VERIFICATION"
    TIMESTAMP_CHECK = "TIMESTAMP_CHECK"
    CERTIFICATE_CHECK = "CERTIFICATE_CHECK"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class VerificationResult(enum.Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    PENDING = "PENDING"
    INCONCLUSIVE = "INCONCLUSIVE"


class LegalDocument(Base, TimestampMixin):
    """A versioned legal text that clients can sign once published."""

    __tablename__ = "legal_documents"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_type: Mapped[LegalDocumentType] = mapped_column(
        Enum(LegalDocumentType), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str] = mapped_column(String(10), default="1.0", nullable=False)
    language: Mapped[str] = mapped_column(String(5), default="nl", nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), default=DocumentStatus.DRAFT, nullable=False
    )
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("legal_documents.id"))
    change_reason: Mapped[str | None] = mapped_column(Text)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"))
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    published_at: Mapped[datetime | None] = mapped_column(DateTime)
    published_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))

    signatures: Mapped[list["ESignature"]] = relationship(back_populates="document")


class ESignature(Base, TimestampMixin):
    """A signature placed on a legal document.

    ``hash_value`` is the SHA-256 of the document content at signing time.
    """

    __tablename__ = "e_signatures"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("legal_documents.id"), nullable=False
    )
    signer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    signer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    signer_role: Mapped[str | None] = mapped_column(String(100))
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    signature_type: Mapped[SignatureType] = mapped_column(
        Enum(SignatureType), nullable=False
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    location: Mapped[str | None] = mapped_column(String(200))
    hash_value: Mapped[str] = mapped_column(String(64), nullable=False)
    verification_code: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False
    )
    status: Mapped[SignatureStatus] = mapped_column(
        Enum(SignatureStatus), default=SignatureStatus.PENDING, nullable=False
    )
    signed_at: Mapped[datetime | None] = mapped_column(DateTime)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    witnessed_by: Mapped[str | None] = mapped_column(String(200))
    witnessed_at: Mapped[datetime | None] = mapped_column(DateTime)
    compliance_level: Mapped[ComplianceLevel] = mapped_column(
        Enum(ComplianceLevel), default=ComplianceLevel.STANDARD, nullable=False
    )
    certificate_id: Mapped[str | None] = mapped_column(String(32))
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    audit_trail: Mapped[dict | None] = mapped_column(JSONType)

    document: Mapped["LegalDocument"] = relationship(back_populates="signatures")
    verifications: Mapped[list["SignatureVerification"]] = relationship(
        back_populates="signature", order_by="SignatureVerification.id"
    )


class SignatureVerification(Base):
    """A single verification performed against a signature."""

    __tablename__ = "signature_verifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    signature_id: Mapped[int] = mapped_column(
        ForeignKey("e_signatures.id"), nullable=False
    )
    verified_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    verification_type: Mapped[VerificationType] = mapped_column(
        Enum(VerificationType), nullable=False
    )
    result: Mapped[VerificationResult] = mapped_column(
        Enum(VerificationResult), nullable=False
    )
    hash_matches: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timestamp_valid: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    certificate_valid: Mapped[bool | None] = mapped_column(Boolean)
    verified_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    signature: Mapped["ESignature"] = relationship(back_populates="verifications")
