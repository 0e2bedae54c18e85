"""Onboarding workflow endpoints and the public email confirmation link."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.clients import load_client_for
from src.api.deps import (
    client_ip,
    get_audit_context,
    get_db,
    get_is_admin,
    require_permissions,
)
from src.core.logging import get_logger
from src.models.client import OnboardingStep
from src.models.user import User
from src.services.audit import AuditContext
from src.services.permissions import PERMISSIONS as P
from src.services.workflow import WorkflowService, get_workflow_state

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["workflow"])


class WorkflowStepRequest(BaseModel):
    """An onboarding step reached by a client.

    ``validation_results`` carries the outcome of checks done while the step
    was filled in, keyed ``kvk``/``btw``/``iban`` with an ``is_valid`` flag.
    """

    client_id: int = Field(gt=0)
    step: OnboardingStep
    validation_results: dict[str, Any] | None = None


class ConfirmEmailRequest(BaseModel):
    token: str = Field(default="", max_length=128)


class ConfirmEmailResponse(BaseModel):
    success: bool
    message: str
    client_id: int
    redirect_url: str = "/dashboard"


@router.post("/clients/workflow")
async def process_workflow_step(
    payload: WorkflowStepRequest,
    user: User = Depends(require_permissions(P.CLIENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Record an onboarding step and return the resulting workflow state."""
    client = await load_client_for(db, payload.client_id, user, admin)
    state = await WorkflowService(db, context).process_onboarding_step(
        client, payload.step, payload.validation_results
    )
    return state.to_dict()


@router.get("/clients/workflow/{client_id}")
async def get_workflow(
    client_id: int,
    user: User = Depends(require_permissions(P.CLIENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    client = await load_client_for(db, client_id, user, admin)
    return get_workflow_state(client).to_dict()


async def _confirm(request: Request, token: str, db: AsyncSession) -> ConfirmEmailResponse:
    if not token:
        raise HTTPException(status_code=400, detail="Confirmation token is required")
    context = AuditContext(
        ip_address=client_ip(request), user_agent=request.headers.get("User-Agent")
    )
    client = await WorkflowService(db, context).confirm_email(token)
    if client is None:
        raise HTTPException(status_code=400, detail="Invalid or expired confirmation token")
    logger.info("email_confirmed", client_id=client.id)
    return ConfirmEmailResponse(
        success=True, message="Email confirmed successfully", client_id=client.id
    )


@router.get("/confirm-email", response_model=ConfirmEmailResponse)
async def confirm_email_link(
    request: Request,
    token: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
) -> ConfirmEmailResponse:
    """Target of the link in the confirmation email; no session needed."""
    return await _confirm(request, token, db)


@router.post("/confirm-email", response_model=ConfirmEmailResponse)
async def confirm_email(
    request: Request,
    payload: ConfirmEmailRequest,
    db: AsyncSession = Depends(get_db),
) -> ConfirmEmailResponse:
    return await _confirm(request, payload.token, db)
