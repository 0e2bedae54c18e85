"""Admin endpoints: client approvals, dashboard and role management."""

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    Pagination,
    get_audit_context,
    get_db,
    get_pagination,
    require_permissions,
)
from src.core.logging import get_logger
from src.models.audit import AuditAction
from src.models.client import ApprovalStatus, Client, ClientApproval
from src.models.user import User, UserRole, UserRoleType
from src.services.audit import AuditContext, log_action
from src.services.permissions import PERMISSIONS as P
from src.services.permissions import assign_role, revoke_role
from src.services.workflow import (
    ClientNotFoundError,
    WorkflowService,
    get_admin_dashboard_stats,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ApprovalResponse(BaseModel):
    id: int
    client_id: int
    client_name: str
    company: str | None
    client_email: str
    status: str
    priority: str
    workflow_step: str
    validation_checks: dict[str, Any] | None
    requested_by: int
    requested_at: datetime
    reviewed_by: int | None
    reviewed_at: datetime | None
    approval_notes: str | None
    rejection_reason: str | None


class ApprovalListResponse(BaseModel):
    items: list[ApprovalResponse]
    total: int
    limit: int
    offset: int


class ApprovalDecisionRequest(BaseModel):
    client_id: int = Field(gt=0)
    action: Literal["approve", "reject"]
    notes: str | None = None
    rejection_reason: str | None = None


class BulkDecisionRequest(BaseModel):
    client_ids: list[int] = Field(min_length=1, max_length=100)
    action: Literal["approve", "reject"]
    notes: str | None = None
    rejection_reason: str | None = None


class DecisionResponse(BaseModel):
    success: bool
    message: str
    client_id: int
    onboarding_status: str
    approval_status: str


class BulkResultItem(BaseModel):
    client_id: int
    status: str
    error: str | None = None


class BulkDecisionResponse(BaseModel):
    success: bool
    results: list[BulkResultItem]


class RoleAssignRequest(BaseModel):
    role: UserRoleType
    expires_at: datetime | None = None
    scope_type: str | None = Field(default=None, max_length=50)
    scope_id: str | None = Field(default=None, max_length=100)
    permissions: list[str] = Field(default_factory=list)


class RoleResponse(BaseModel):
    id: int
    user_id: int
    role: str
    permissions: list[str]
    scope_type: str | None
    scope_id: str | None
    expires_at: datetime | None
    is_active: bool
    assigned_by: int | None


def _to_approval_response(approval: ClientApproval, client: Client) -> ApprovalResponse:
    return ApprovalResponse(
        id=approval.id,
        client_id=client.id,
        client_name=client.name,
        company=client.company,
        client_email=client.email,
        status=approval.status.value,
        priority=approval.priority.value,
        workflow_step=approval.workflow_step,
        validation_checks=approval.validation_checks,
        requested_by=approval.requested_by,
        requested_at=approval.requested_at,
        reviewed_by=approval.reviewed_by,
        reviewed_at=approval.reviewed_at,
        approval_notes=approval.approval_notes,
        rejection_reason=approval.rejection_reason,
    )


@router.get("/approvals", response_model=ApprovalListResponse)
async def list_approvals(
    approval_status: ApprovalStatus = Query(
        default=ApprovalStatus.PENDING_APPROVAL, alias="status"
    ),
    page: Pagination = Depends(get_pagination),
    _: User = Depends(require_permissions(P.ADMIN_APPROVALS)),
    db: AsyncSession = Depends(get_db),
) -> ApprovalListResponse:
    """Approval requests in one status, newest first."""
    total_result = await db.execute(
        select(func.count(ClientApproval.id)).where(ClientApproval.status == approval_status)
    )
    rows = await db.execute(
        select(ClientApproval, Client)
        .join(Client, Client.id == ClientApproval.client_id)
        .where(ClientApproval.status == approval_status)
        .order_by(ClientApproval.created_at.desc(), ClientApproval.id.desc())
        .limit(page.limit)
        .offset(page.offset)
    )
    return ApprovalListResponse(
        items=[_to_approval_response(approval, client) for approval, client in rows.all()],
        total=int(total_result.scalar() or 0),
        limit=page.limit,
        offset=page.offset,
    )


@router.post("/approvals", response_model=DecisionResponse)
async def decide_approval(
    payload: ApprovalDecisionRequest,
    _: User = Depends(require_permissions(P.ADMIN_APPROVALS, P.CLIENT_APPROVE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DecisionResponse:
    """Approve or reject one client under review."""
    if payload.action == "reject" and not (payload.rejection_reason or "").strip():
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    service = WorkflowService(db, context)
    try:
        client = await service.get_client(payload.client_id)
    except ClientNotFoundError:
        raise HTTPException(status_code=404, detail="Client not found") from None

    if payload.action == "approve":
        await service.approve_client(client, payload.notes)
    else:
        await service.reject_client(client, payload.rejection_reason)

    return DecisionResponse(
        success=True,
        message=f"Client {client.approval_status.value.lower()} successfully",
        client_id=client.id,
        onboarding_status=client.onboarding_status.value,
        approval_status=client.approval_status.value,
    )


@router.put("/approvals", response_model=BulkDecisionResponse)
async def bulk_decide_approvals(
    payload: BulkDecisionRequest,
    _: User = Depends(require_permissions(P.ADMIN_APPROVALS, P.CLIENT_APPROVE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> BulkDecisionResponse:
    """Approve or reject several clients; failures are reported per client."""
    results = await WorkflowService(db, context).bulk_decide(
        payload.client_ids,
        payload.action,
        notes=payload.notes,
        rejection_reason=payload.rejection_reason,
    )
    return BulkDecisionResponse(
        success=True,
        results=[
            BulkResultItem(client_id=r.client_id, status=r.status, error=r.error)
            for r in results
        ],
    )


@router.get("/dashboard")
async def admin_dashboard(
    _: User = Depends(require_permissions(P.ADMIN_DASHBOARD)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await get_admin_dashboard_stats(db)


@router.post(
    "/users/{user_id}/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_user_role(
    user_id: int,
    payload: RoleAssignRequest,
    admin: User = Depends(require_permissions(P.ADMIN_USERS)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    """Grant a role, optionally scoped to one resource or time-limited."""
    if await db.get(User, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    unknown = sorted(set(payload.permissions) - set(P.all()))
    if unknown:
        raise HTTPException(
            status_code=400, detail=f"Unknown permissions: {', '.join(unknown)}"
        )

    assignment = await assign_role(
        db,
        user_id,
        payload.role,
        assigned_by=admin.id,
        expires_at=payload.expires_at,
        scope_type=payload.scope_type,
        scope_id=payload.scope_id,
        permissions=payload.permissions,
    )
    await log_action(
        db,
        AuditAction.CREATE,
        "UserRole",
        assignment.id,
        context=context,
        new_values={
            "user_id": user_id,
            "role": payload.role.value,
            "scope_type": payload.scope_type,
            "scope_id": payload.scope_id,
        },
    )
    return _to_role_response(assignment)


@router.delete("/roles/{role_id}", response_model=RoleResponse)
async def revoke_user_role(
    role_id: int,
    _: User = Depends(require_permissions(P.ADMIN_USERS)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    assignment = await revoke_role(db, role_id)
    if assignment is None:
        raise HTTPException(status_code=404, detail="Role not found")
    await log_action(
        db,
        AuditAction.DELETE,
        "UserRole",
        assignment.id,
        context=context,
        old_values={"role": assignment.role.value, "is_active": True},
        new_values={"is_active": False},
    )
    return _to_role_response(assignment)


def _to_role_response(assignment: UserRole) -> RoleResponse:
    return RoleResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        role=assignment.role.value,
        permissions=list(assignment.permissions or []),
        scope_type=assignment.scope_type,
        scope_id=assignment.scope_id,
        expires_at=assignment.expires_at,
        is_active=assignment.is_active,
        assigned_by=assignment.assigned_by,
    )
