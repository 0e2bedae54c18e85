"""Audit trail endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import Pagination, get_db, get_pagination, require_permissions
from src.models.audit import AuditAction, AuditLog
from src.models.user import User
from src.services.audit import get_audit_logs, verify_chain
from src.services.permissions import PERMISSIONS as P

router = APIRouter(prefix="/api/audit", tags=["audit"])


class AuditEntryResponse(BaseModel):
    id: int
    user_id: int | None
    action: str
    entity: str
    entity_id: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    context: str | None
    entry_hash: str
    previous_hash: str | None
    created_at: datetime


class AuditTrailResponse(BaseModel):
    items: list[AuditEntryResponse]
    total: int
    limit: int
    offset: int


class ChainVerificationResponse(BaseModel):
    valid: bool
    checked: int
    broken_at: int | None
    reason: str | None


def _to_entry_response(entry: AuditLog) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=entry.id,
        user_id=entry.user_id,
        action=entry.action.value,
        entity=entry.entity,
        entity_id=entry.entity_id,
        old_values=entry.old_values,
        new_values=entry.new_values,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        context=entry.context,
        entry_hash=entry.entry_hash,
        previous_hash=entry.previous_hash,
        created_at=entry.created_at,
    )


@router.get("/trail", response_model=AuditTrailResponse)
async def audit_trail(
    user_id: int | None = Query(default=None, gt=0),
    entity: str | None = Query(default=None, max_length=100),
    entity_id: str | None = Query(default=None, max_length=100),
    action: AuditAction | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    page: Pagination = Depends(get_pagination),
    _: User = Depends(require_permissions(P.ADMIN_AUDIT)),
    db: AsyncSession = Depends(get_db),
) -> AuditTrailResponse:
    entries, total = await get_audit_logs(
        db,
        user_id=user_id,
        entity=entity,
        entity_id=entity_id,
        action=action,
        date_from=date_from,
        date_to=date_to,
        limit=page.limit,
        offset=page.offset,
    )
    return AuditTrailResponse(
        items=[_to_entry_response(entry) for entry in entries],
        total=total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/verify", response_model=ChainVerificationResponse)
async def audit_verify(
    _: User = Depends(require_permissions(P.ADMIN_AUDIT)),
    db: AsyncSession = Depends(get_db),
) -> ChainVerificationResponse:
    """Recompute the hash chain and report the first entry that breaks it."""
    result = await verify_chain(db)
    return ChainVerificationResponse(
        valid=result.valid,
        checked=result.checked,
        broken_at=result.broken_at,
        reason=result.reason,
    )
