"""SQLAlchemy models for the ZZP Trust application."""

from src.models.audit import AuditAction, AuditChainHead, AuditLog
from src.models.base import Base
from src.models.client import (
    ApprovalPriority,
    ApprovalStatus,
    Client,
    ClientApproval,
    ClientValidation,
    OnboardingStatus,
    OnboardingStep,
    ValidationStatus,
    ValidationType,
)
from src.models.document import (
    ComplianceLevel,
    DocumentStatus,
    ESignature,
    LegalDocument,
    LegalDocumentType,
    SignatureStatus,
    SignatureType,
    SignatureVerification,
    VerificationResult,
    VerificationType,
)
from src.models.email import EmailLog, EmailStatus, EmailType
from src.models.invoice import DueDateType, Invoice, InvoiceItem, InvoiceStatus, UnitType
from src.models.service import StandardService
from src.models.user import User, UserRole, UserRoleType

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserRoleType",
    "Client",
    "ClientApproval",
    "ClientValidation",
    "OnboardingStatus",
    "OnboardingStep",
    "ApprovalStatus",
    "ApprovalPriority",
    "ValidationStatus",
    "ValidationType",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "DueDateType",
    "UnitType",
    "StandardService",
    "LegalDocument",
    "LegalDocumentType",
    "DocumentStatus",
    "ESignature",
    "SignatureStatus",
    "SignatureType",
    "SignatureVerification",
    "VerificationResult",
    "VerificationType",
    "ComplianceLevel",
    "EmailLog",
    "EmailStatus",
    "EmailType",
    "AuditLog",
    "AuditChainHead",
    "AuditAction",
]
