"""Electronic signature endpoints, including the public verification lookup."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    Pagination,
    client_ip,
    get_audit_context,
    get_db,
    get_is_admin,
    get_pagination,
    require_permissions,
)
from src.models.document import (
    ComplianceLevel,
    ESignature,
    SignatureStatus,
    SignatureType,
    VerificationType,
)
from src.models.user import User
from src.services.audit import AuditContext
from src.services.permissions import PERMISSIONS as P
from src.services.signatures import (
    create_signature,
    expire_pending_signatures,
    generate_certificate,
    get_signature,
    get_signature_stats,
    list_signatures,
    reject_signature,
    verify_by_code,
    verify_signature,
)
from src.validation.formats import validate_email_address

router = APIRouter(prefix="/api/e-signatures", tags=["e-signatures"])


class SignatureCreateRequest(BaseModel):
    document_id: int = Field(gt=0)
    signer_email: str = Field(min_length=3, max_length=255)
    signer_name: str = Field(min_length=1, max_length=200)
    signature_data: str = Field(min_length=1)
    signature_type: SignatureType
    signer_role: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=200)
    witnessed_by: str | None = Field(default=None, max_length=200)
    compliance_level: ComplianceLevel = ComplianceLevel.STANDARD


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class VerifyRequest(BaseModel):
    verification_type: VerificationType = VerificationType.HASH_VERIFICATION


class ExpireRequest(BaseModel):
    older_than_hours: int | None = Field(default=None, ge=1)


class SignatureResponse(BaseModel):
    """A signature without the raw signature image."""

    id: int
    document_id: int
    signer_email: str
    signer_name: str
    signer_role: str | None
    signature_type: str
    status: str
    timestamp: datetime
    signed_at: datetime | None
    hash_value: str
    verification_code: str
    compliance_level: str
    certificate_id: str | None
    rejection_reason: str | None
    witnessed_by: str | None
    location: str | None


class VerificationResponse(BaseModel):
    id: int
    signature_id: int
    verification_type: str
    result: str
    hash_matches: bool
    timestamp_valid: bool
    certificate_valid: bool | None
    verified_at: datetime


def _to_signature_response(signature: ESignature) -> SignatureResponse:
    return SignatureResponse(
        id=signature.id,
        document_id=signature.document_id,
        signer_email=signature.signer_email,
        signer_name=signature.signer_name,
        signer_role=signature.signer_role,
        signature_type=signature.signature_type.value,
        status=signature.status.value,
        timestamp=signature.timestamp,
        signed_at=signature.signed_at,
        hash_value=signature.hash_value,
        verification_code=signature.verification_code,
        compliance_level=signature.compliance_level.value,
        certificate_id=signature.certificate_id,
        rejection_reason=signature.rejection_reason,
        witnessed_by=signature.witnessed_by,
        location=signature.location,
    )


@router.post("", response_model=SignatureResponse, status_code=status.HTTP_201_CREATED)
async def post_signature(
    payload: SignatureCreateRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> SignatureResponse:
    """Sign a published document as the given signer."""
    email_check = validate_email_address(payload.signer_email)
    if not email_check.is_valid:
        raise ValueError(email_check.error)
    signature = await create_signature(
        db,
        document_id=payload.document_id,
        signer_email=email_check.normalized,
        signer_name=payload.signer_name.strip(),
        signature_data=payload.signature_data,
        signature_type=payload.signature_type,
        signer_role=payload.signer_role,
        location=payload.location,
        witnessed_by=payload.witnessed_by,
        compliance_level=payload.compliance_level,
        owner_id=None if admin else user.id,
        context=context,
    )
    return _to_signature_response(signature)


@router.get("", response_model=list[SignatureResponse])
async def get_signatures(
    document_id: int | None = Query(default=None, gt=0),
    signer_email: str | None = Query(default=None, max_length=255),
    signature_status: SignatureStatus | None = Query(default=None, alias="status"),
    page: Pagination = Depends(get_pagination),
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> list[SignatureResponse]:
    signatures = await list_signatures(
        db,
        document_id=document_id,
        signer_email=signer_email,
        status=signature_status,
        owner_id=None if admin else user.id,
        limit=page.limit,
        offset=page.offset,
    )
    return [_to_signature_response(signature) for signature in signatures]


@router.get("/stats")
async def signature_stats(
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, int]:
    return await get_signature_stats(db, None if admin else user.id)


@router.get("/verify/{verification_code}")
async def verify_code(
    verification_code: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Public check of a signature by the code printed on signed copies."""
    context = AuditContext(
        ip_address=client_ip(request), user_agent=request.headers.get("User-Agent")
    )
    outcome = await verify_by_code(db, verification_code, context)
    return {"is_valid": outcome.is_valid, "signature": outcome.details()}


@router.post("/expire")
async def expire_signatures(
    payload: ExpireRequest,
    _: User = Depends(require_permissions(P.ADMIN_SETTINGS)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict[str, int]:
    count = await expire_pending_signatures(db, payload.older_than_hours, context)
    return {"expired": count}


@router.get("/{signature_id}", response_model=SignatureResponse)
async def get_signature_detail(
    signature_id: int,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> SignatureResponse:
    signature = await get_signature(db, signature_id, None if admin else user.id)
    return _to_signature_response(signature)


@router.post("/{signature_id}/verify", response_model=VerificationResponse)
async def post_verification(
    signature_id: int,
    payload: VerifyRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> VerificationResponse:
    signature = await get_signature(db, signature_id, None if admin else user.id)
    verification = await verify_signature(db, signature, payload.verification_type, context)
    return VerificationResponse(
        id=verification.id,
        signature_id=signature.id,
        verification_type=verification.verification_type.value,
        result=verification.result.value,
        hash_matches=verification.hash_matches,
        timestamp_valid=verification.timestamp_valid,
        certificate_valid=verification.certificate_valid,
        verified_at=verification.verified_at,
    )


@router.post("/{signature_id}/reject", response_model=SignatureResponse)
async def post_reject(
    signature_id: int,
    payload: RejectRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> SignatureResponse:
    signature = await get_signature(db, signature_id, None if admin else user.id)
    await reject_signature(db, signature, payload.reason.strip(), context)
    return _to_signature_response(signature)


@router.post("/{signature_id}/certificate")
async def post_certificate(
    signature_id: int,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    signature = await get_signature(db, signature_id, None if admin else user.id)
    certificate_id = await generate_certificate(db, signature, context)
    return {"signature_id": signature.id, "certificate_id": certificate_id}
