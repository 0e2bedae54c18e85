"""Electronic signatures on legal documents.

A signature stores the SHA-256 of the document content at signing time, so
later verification can tell whether the text was changed afterwards. Each
signature gets a public verification code and, on request, a certificate id
derived from the signature details.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import orjson
from sqlalchemy import ColumnElement, Select, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.logging import get_logger
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.document import (
    ComplianceLevel,
    DocumentStatus,
    ESignature,
    LegalDocument,
    SignatureStatus,
    SignatureType,
    SignatureVerification,
    VerificationResult,
    VerificationType,
)
from src.services.audit import AuditContext, log_action
from src.services.documents import (
    DocumentNotFoundError,
    DocumentStateError,
    get_document,
    owned_client_ids,
)

logger = get_logger(__name__)


class SignatureNotFoundError(LookupError):
    pass


class SignatureStateError(ValueError):
    pass


def document_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def generate_verification_code() -> str:
    """32 uppercase hex characters."""
    return secrets.token_hex(16).upper()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def certificate_id_for(signature: ESignature, document: LegalDocument) -> str:
    """``CERT-`` plus the first 16 hex characters of the certificate digest."""
    certificate = {
        "signature_id": signature.id,
        "verification_code": signature.verification_code,
        "signer_name": signature.signer_name,
        "signer_email": signature.signer_email,
        "document_title": document.title,
        "signed_at": _iso(signature.signed_at),
        "timestamp": _iso(signature.timestamp),
        "hash_value": signature.hash_value,
        "ip_address": signature.ip_address,
        "compliance_level": signature.compliance_level.value,
    }
    canonical = orjson.dumps(certificate, option=orjson.OPT_SORT_KEYS)
    return "CERT-" + hashlib.sha256(canonical).hexdigest()[:16].upper()


def _append_trail(signature: ESignature, event: str, **details: Any) -> None:
    # Reassign so the JSON column is flagged dirty.
    trail = dict(signature.audit_trail or {})
    trail[event] = {"timestamp": utcnow().isoformat(), **details}
    signature.audit_trail = trail


def _signature_visible_to(owner_id: int | None) -> ColumnElement[bool]:
    """Signatures the user recorded, plus any on their own clients' documents."""
    if owner_id is None:
        return true()
    return or_(
        ESignature.created_by == owner_id,
        LegalDocument.client_id.in_(owned_client_ids(owner_id)),
    )


def _scoped(stmt: Select, owner_id: int | None) -> Select:
    return stmt.join(LegalDocument, ESignature.document_id == LegalDocument.id).where(
        _signature_visible_to(owner_id)
    )


async def get_signature(
    db: AsyncSession, signature_id: int, owner_id: int | None = None
) -> ESignature:
    result = await db.execute(
        _scoped(select(ESignature), owner_id).where(ESignature.id == signature_id)
    )
    signature = result.scalar_one_or_none()
    if signature is None:
        raise SignatureNotFoundError("Signature not found")
    return signature


async def _document_for(db: AsyncSession, signature: ESignature) -> LegalDocument:
    document = await db.get(LegalDocument, signature.document_id)
    if document is None:
        raise DocumentNotFoundError("Document not found")
    return document


async def list_signatures(
    db: AsyncSession,
    *,
    document_id: int | None = None,
    signer_email: str | None = None,
    status: SignatureStatus | None = None,
    owner_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ESignature]:
    stmt = _scoped(select(ESignature), owner_id)
    if document_id is not None:
        stmt = stmt.where(ESignature.document_id == document_id)
    if signer_email:
        stmt = stmt.where(func.lower(ESignature.signer_email) == signer_email.lower())
    if status is not None:
        stmt = stmt.where(ESignature.status == status)
    stmt = stmt.order_by(ESignature.created_at.desc(), ESignature.id.desc())
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def create_signature(
    db: AsyncSession,
    *,
    document_id: int,
    signer_email: str,
    signer_name: str,
    signature_data: str,
    signature_type: SignatureType,
    signer_role: str | None = None,
    location: str | None = None,
    witnessed_by: str | None = None,
    compliance_level: ComplianceLevel = ComplianceLevel.STANDARD,
    owner_id: int | None = None,
    context: AuditContext | None = None,
) -> ESignature:
    """Sign a published document.

    The signature is created PENDING and completed to SIGNED straight away,
    followed by an initial hash verification.

    Raises:
        DocumentNotFoundError: If the document does not exist or belongs
            to another user's client.
        DocumentStateError: If the document is not published.
    """
    context = context or AuditContext()
    document = await get_document(db, document_id, owner_id)
    if document.status != DocumentStatus.PUBLISHED:
        raise DocumentStateError("Only published documents can be signed")

    now = utcnow()
    signature = ESignature(
        document_id=document.id,
        signer_email=signer_email,
        signer_name=signer_name,
        signer_role=signer_role,
        signature_data=signature_data,
        signature_type=signature_type,
        timestamp=now,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        location=location,
        hash_value=document_hash(document.content),
        verification_code=generate_verification_code(),
        created_by=context.user_id,
        status=SignatureStatus.PENDING,
        witnessed_by=witnessed_by,
        witnessed_at=now if witnessed_by else None,
        compliance_level=compliance_level,
        audit_trail={
            "created": {
                "timestamp": now.isoformat(),
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
                "location": location,
            }
        },
    )
    db.add(signature)
    await db.flush()
    await log_action(
        db,
        AuditAction.CREATE,
        "ESignature",
        signature.id,
        context=context,
        new_values={
            "document_id": document.id,
            "signer_email": signer_email,
            "signature_type": signature_type.value,
            "compliance_level": compliance_level.value,
        },
    )

    await complete_signature(db, signature, document, context)
    logger.info("signature_created", signature_id=signature.id, document_id=document.id)
    return signature


async def complete_signature(
    db: AsyncSession,
    signature: ESignature,
    document: LegalDocument,
    context: AuditContext | None = None,
) -> ESignature:
    if signature.status != SignatureStatus.PENDING:
        raise SignatureStateError("Only pending signatures can be completed")
    context = context or AuditContext()
    signature.status = SignatureStatus.SIGNED
    signature.signed_at = utcnow()
    _append_trail(signature, "completed", ip_address=context.ip_address)
    await db.flush()

    await _record_verification(
        db, signature, document, VerificationType.HASH_VERIFICATION, context.user_id
    )
    await log_action(
        db,
        AuditAction.UPDATE,
        "ESignature",
        signature.id,
        context=context,
        old_values={"status": SignatureStatus.PENDING.value},
        new_values={"status": SignatureStatus.SIGNED.value},
    )
    return signature


async def _record_verification(
    db: AsyncSession,
    signature: ESignature,
    document: LegalDocument,
    verification_type: VerificationType,
    verified_by: int | None = None,
) -> SignatureVerification:
    now = utcnow()
    hash_matches = False
    timestamp_valid = False
    certificate_valid: bool | None = None

    if verification_type == VerificationType.HASH_VERIFICATION:
        hash_matches = document_hash(document.content) == signature.hash_value
        result = VerificationResult.VALID if hash_matches else VerificationResult.INVALID
    elif verification_type == VerificationType.TIMESTAMP_CHECK:
        timestamp_valid = signature.timestamp <= now and (
            signature.signed_at is not None and signature.signed_at >= signature.timestamp
        )
        result = VerificationResult.VALID if timestamp_valid else VerificationResult.INVALID
    elif verification_type == VerificationType.CERTIFICATE_CHECK:
        certificate_valid = bool(signature.certificate_id) and (
            signature.certificate_id == certificate_id_for(signature, document)
        )
        result = VerificationResult.VALID if certificate_valid else VerificationResult.INVALID
    elif verification_type == VerificationType.MANUAL_REVIEW:
        result = VerificationResult.PENDING
    else:
        result = VerificationResult.INCONCLUSIVE

    verification = SignatureVerification(
        signature_id=signature.id,
        verified_by=verified_by,
        verification_type=verification_type,
        result=result,
        hash_matches=hash_matches,
        timestamp_valid=timestamp_valid,
        certificate_valid=certificate_valid,
        verified_at=now,
    )
    db.add(verification)
    await db.flush()
    logger.info(
        "signature_verified",
        signature_id=signature.id,
        verification_type=verification_type.value,
        result=result.value,
    )
    return verification


async def verify_signature(
    db: AsyncSession,
    signature: ESignature,
    verification_type: VerificationType,
    context: AuditContext | None = None,
) -> SignatureVerification:
    """Run one verification against a signature and record it."""
    context = context or AuditContext()
    document = await _document_for(db, signature)
    verification = await _record_verification(
        db, signature, document, verification_type, context.user_id
    )
    await log_action(
        db,
        AuditAction.CREATE,
        "SignatureVerification",
        verification.id,
        context=context,
        new_values={
            "signature_id": signature.id,
            "verification_type": verification_type.value,
            "result": verification.result.value,
        },
    )
    return verification


@dataclass
class CodeVerification:
    signature: ESignature
    document: LegalDocument
    is_valid: bool
    hash_valid: bool
    timestamp_valid: bool

    def details(self) -> dict[str, Any]:
        return {
            "status": self.signature.status.value,
            "signed_at": _iso(self.signature.signed_at),
            "signer_name": self.signature.signer_name,
            "signer_email": self.signature.signer_email,
            "document_title": self.document.title,
            "document_version": self.document.version,
            "hash_valid": self.hash_valid,
            "timestamp_valid": self.timestamp_valid,
            "certificate_id": self.signature.certificate_id,
            "compliance_level": self.signature.compliance_level.value,
        }


async def verify_by_code(
    db: AsyncSession, verification_code: str, context: AuditContext | None = None
) -> CodeVerification:
    """Check a signature by its public verification code.

    Valid when the signature is SIGNED and both the hash and timestamp checks
    pass.

    Raises:
        SignatureNotFoundError: If no signature carries the code.
    """
    result = await db.execute(
        select(ESignature).where(
            ESignature.verification_code == verification_code.strip().upper()
        )
    )
    signature = result.scalar_one_or_none()
    if signature is None:
        raise SignatureNotFoundError("Signature not found")

    hash_check = await verify_signature(
        db, signature, VerificationType.HASH_VERIFICATION, context
    )
    timestamp_check = await verify_signature(
        db, signature, VerificationType.TIMESTAMP_CHECK, context
    )
    document = await _document_for(db, signature)
    hash_valid = hash_check.result == VerificationResult.VALID
    timestamp_valid = timestamp_check.result == VerificationResult.VALID
    return CodeVerification(
        signature=signature,
        document=document,
        is_valid=signature.status == SignatureStatus.SIGNED and hash_valid and timestamp_valid,
        hash_valid=hash_valid,
        timestamp_valid=timestamp_valid,
    )


async def reject_signature(
    db: AsyncSession,
    signature: ESignature,
    reason: str,
    context: AuditContext | None = None,
) -> ESignature:
    """Reject a signature that is not already rejected or expired."""
    if signature.status in (SignatureStatus.REJECTED, SignatureStatus.EXPIRED):
        raise SignatureStateError(
            f"Signature is already {signature.status.value.lower()}"
        )
    context = context or AuditContext()
    old_status = signature.status
    signature.status = SignatureStatus.REJECTED
    signature.rejection_reason = reason
    _append_trail(signature, "rejected", reason=reason, rejected_by=context.user_id)
    await db.flush()
    await log_action(
        db,
        AuditAction.UPDATE,
        "ESignature",
        signature.id,
        context=context,
        old_values={"status": old_status.value},
        new_values={"status": SignatureStatus.REJECTED.value, "reason": reason},
    )
    return signature


async def generate_certificate(
    db: AsyncSession, signature: ESignature, context: AuditContext | None = None
) -> str:
    """Issue (or re-derive) the certificate id of a signed signature."""
    if signature.status != SignatureStatus.SIGNED:
        raise SignatureStateError("Certificates are only issued for signed signatures")
    document = await _document_for(db, signature)
    signature.certificate_id = certificate_id_for(signature, document)
    await db.flush()
    await log_action(
        db,
        AuditAction.UPDATE,
        "ESignature",
        signature.id,
        context=context,
        new_values={"certificate_id": signature.certificate_id},
    )
    return signature.certificate_id


async def get_signature_stats(
    db: AsyncSession, owner_id: int | None = None
) -> dict[str, int]:
    rows = await db.execute(
        _scoped(select(ESignature.status, func.count(ESignature.id)), owner_id)
        .group_by(ESignature.status)
    )
    counts = {status: int(count) for status, count in rows.all()}
    return {
        "total": sum(counts.values()),
        "pending": counts.get(SignatureStatus.PENDING, 0),
        "signed": counts.get(SignatureStatus.SIGNED, 0),
        "rejected": counts.get(SignatureStatus.REJECTED, 0),
        "expired": counts.get(SignatureStatus.EXPIRED, 0),
    }


async def expire_pending_signatures(
    db: AsyncSession,
    older_than_hours: int | None = None,
    context: AuditContext | None = None,
) -> int:
    """Expire PENDING signatures created more than ``older_than_hours`` ago."""
    hours = older_than_hours if older_than_hours is not None else settings.signature_expiry_hours
    cutoff = utcnow() - timedelta(hours=hours)
    result = await db.execute(
        select(ESignature).where(
            ESignature.status == SignatureStatus.PENDING,
            ESignature.created_at < cutoff,
        )
    )
    expired = list(result.scalars().all())
    for signature in expired:
        signature.status = SignatureStatus.EXPIRED
        _append_trail(signature, "expired", older_than_hours=hours)
    await db.flush()

    await log_action(
        db,
        AuditAction.UPDATE,
        "ESignature",
        "BATCH_EXPIRE",
        context=context,
        new_values={
            "count": len(expired),
            "older_than_hours": hours,
            "expiration_date": cutoff.isoformat(),
        },
    )
    logger.info("signatures_expired", count=len(expired), older_than_hours=hours)
    return len(expired)
