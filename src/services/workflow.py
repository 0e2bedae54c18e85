"""Client onboarding and admin approval workflow.

Status changes go through ``OnboardingStateMachine``; this service adds the
surrounding effects: confirmation tokens, approval records, notification
emails and audit entries.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.logging import client_id_ctx, get_logger
from src.core.security import generate_token
from src.models.audit import AuditAction
from src.models.base import utcnow
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
from src.models.email import EmailLog, EmailStatus, EmailType
from src.orchestration.onboarding import OnboardingStateMachine, TransitionNotAllowed
from src.services.audit import AuditContext, log_action
from src.services.email import confirmation_url, mark_confirmation_clicked, send_email
from src.validation.formats import (
    validate_address,
    validate_email_address,
    validate_iban,
    validate_phone_number,
    validate_postal_code,
)

if TYPE_CHECKING:
    from src.integrations.btw import BTWClient
    from src.integrations.kvk import KvKClient

logger = get_logger(__name__)

BASE_COMPLETION_HOURS = 48
HOURS_PER_BLOCKER = 24


class ClientNotFoundError(LookupError):
    """Raised when a workflow action names a client that does not exist."""


@dataclass
class WorkflowState:
    """Snapshot of where a client stands in onboarding."""

    client_id: int
    current_step: OnboardingStep
    onboarding_status: OnboardingStatus
    approval_status: ApprovalStatus
    completed_steps: list[OnboardingStep]
    validation_results: dict[str, bool]
    requires_admin_review: bool
    blockers: list[str]
    next_action: str
    estimated_completion: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["current_step"] = self.current_step.value
        data["onboarding_status"] = self.onboarding_status.value
        data["approval_status"] = self.approval_status.value
        data["completed_steps"] = [step.value for step in self.completed_steps]
        return data


@dataclass
class BulkResult:
    client_id: int
    status: str
    error: str | None = None


@dataclass
class CheckOutcome:
    passed: bool
    detail: dict[str, Any] = field(default_factory=dict)


def _snapshot(client: Client) -> dict[str, Any]:
    return {
        "onboarding_status": client.onboarding_status.value,
        "approval_status": client.approval_status.value,
        "can_create_invoices": client.can_create_invoices,
    }


def get_workflow_state(client: Client, now: datetime | None = None) -> WorkflowState:
    """Derive completed steps, blockers and the next action from client data."""
    validation_results = {
        "kvk": bool(client.kvk_validated),
        "btw": bool(client.btw_validated),
        "iban": bool(client.iban_validated),
        "email": bool(client.email_confirmed),
        "phone": bool(client.phone),
    }

    completed: list[OnboardingStep] = []
    if client.name and client.email and client.phone:
        completed.append(OnboardingStep.BASIC_INFO)
    if client.company and client.kvk_number:
        completed.append(OnboardingStep.BUSINESS_DETAILS)
    if client.iban and client.bank_name:
        completed.append(OnboardingStep.BANKING_INFO)
    if client.email_confirmed:
        completed.append(OnboardingStep.VERIFICATION)
    if client.onboarding_completed_at:
        completed.append(OnboardingStep.COMPLETED)

    blockers = []
    if client.kvk_number and not validation_results["kvk"]:
        blockers.append("KVK validation required")
    if client.vat_number and not validation_results["btw"]:
        blockers.append("BTW validation required")
    if client.iban and not validation_results["iban"]:
        blockers.append("IBAN validation required")
    if not validation_results["email"]:
        blockers.append("Email confirmation required")

    if client.approval_status == ApprovalStatus.APPROVED:
        next_action = "Account ready for use"
    elif client.onboarding_status == OnboardingStatus.EMAIL_SENT:
        next_action = "Await email confirmation"
    elif client.onboarding_status == OnboardingStatus.ADMIN_REVIEW:
        next_action = "Await admin approval"
    elif client.onboarding_status == OnboardingStatus.REJECTED:
        next_action = "Update details and resubmit"
    else:
        next_action = "Complete current onboarding step"

    estimated = None
    if client.approval_status != ApprovalStatus.APPROVED:
        hours = BASE_COMPLETION_HOURS + HOURS_PER_BLOCKER * len(blockers)
        estimated = (now or utcnow()) + timedelta(hours=hours)

    return WorkflowState(
        client_id=client.id,
        current_step=client.onboarding_step,
        onboarding_status=client.onboarding_status,
        approval_status=client.approval_status,
        completed_steps=completed,
        validation_results=validation_results,
        requires_admin_review=client.onboarding_status == OnboardingStatus.ADMIN_REVIEW,
        blockers=blockers,
        next_action=next_action,
        estimated_completion=estimated,
    )


def _result_is_valid(results: dict[str, Any] | None, key: str) -> bool:
    """A supplied result counts only when a registry actually confirmed it."""
    entry = (results or {}).get(key)
    if not isinstance(entry, dict) or not entry.get("is_valid"):
        return False
    # KvK reports "fallback", BTW reports "FALLBACK"
    return str(entry.get("source") or "").lower() != "fallback"


class WorkflowService:
    """Drives a client from creation through admin approval.

    Args:
        db: Session whose transaction all changes join.
        context: Acting user and request origin, recorded in the audit trail.
    """

    def __init__(self, db: AsyncSession, context: AuditContext | None = None) -> None:
        self.db = db
        self.context = context or AuditContext()

    async def get_client(self, client_id: int) -> Client:
        client = await self.db.get(Client, client_id)
        if client is None:
            raise ClientNotFoundError("Client not found")
        client_id_ctx.set(client.id)
        return client

    async def _audit(
        self,
        action: AuditAction,
        client: Client,
        note: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        await log_action(
            self.db,
            action,
            "Client",
            client.id,
            context=self.context,
            old_values=old_values,
            new_values=new_values,
            note=note,
        )

    # ------------------------------------------------------------------
    # Onboarding steps
    # ------------------------------------------------------------------

    async def process_onboarding_step(
        self,
        client: Client,
        step: OnboardingStep,
        validation_results: dict[str, Any] | None = None,
    ) -> WorkflowState:
        """Record the step the client reached and run its side effects.

        Raises:
            TransitionNotAllowed: If the step needs a status change the
                client's current status does not allow.
        """
        previous_step = client.onboarding_step
        client.onboarding_step = step
        now = utcnow()

        if step == OnboardingStep.BUSINESS_DETAILS:
            if _result_is_valid(validation_results, "kvk"):
                client.kvk_validated = True
                client.kvk_validated_at = now
            if _result_is_valid(validation_results, "btw"):
                client.btw_validated = True
                client.btw_validated_at = now
        elif step == OnboardingStep.BANKING_INFO:
            if _result_is_valid(validation_results, "iban"):
                client.iban_validated = True
                client.iban_validated_at = now
        elif step == OnboardingStep.VERIFICATION:
            await self.send_confirmation_email(client)
        elif step == OnboardingStep.COMPLETED:
            await self.submit_for_review(client)

        if step not in (OnboardingStep.VERIFICATION, OnboardingStep.COMPLETED):
            await self._audit(
                AuditAction.UPDATE,
                client,
                f"Onboarding step {step.value} recorded",
                old_values={"onboarding_step": previous_step.value},
                new_values={"onboarding_step": step.value},
            )

        await self.db.flush()
        logger.info("onboarding_step_processed", client_id=client.id, step=step.value)
        return get_workflow_state(client)

    async def send_confirmation_email(self, client: Client) -> EmailLog:
        """Issue a fresh confirmation token and mail the link to the client."""
        old = _snapshot(client)
        OnboardingStateMachine(client).send_confirmation()

        token = generate_token()
        client.email_confirmation_token = token
        client.email_confirmation_expires_at = utcnow() + timedelta(
            hours=settings.email_confirmation_ttl_hours
        )
        email_log = await send_email(
            self.db,
            EmailType.CLIENT_CONFIRMATION,
            client.email,
            {
                "client_name": client.name,
                "company_name": client.company,
                "confirmation_url": confirmation_url(token),
                "expires_hours": settings.email_confirmation_ttl_hours,
            },
            client_id=client.id,
            confirmation_token=token,
        )
        await self._audit(
            AuditAction.STATUS_CHANGE,
            client,
            "Client confirmation email sent",
            old_values=old,
            new_values=_snapshot(client),
        )
        return email_log

    async def confirm_email(self, token: str) -> Client | None:
        """Confirm the client holding ``token``.

        Returns None for unknown or expired tokens and for clients that are
        no longer waiting for confirmation.
        """
        if not token:
            return None
        result = await self.db.execute(
            select(Client).where(Client.email_confirmation_token == token)
        )
        client = result.scalar_one_or_none()
        if client is None:
            logger.warning("email_confirmation_unknown_token")
            return None
        client_id_ctx.set(client.id)

        expires_at = client.email_confirmation_expires_at
        if expires_at is not None and expires_at < utcnow():
            logger.warning("email_confirmation_expired", client_id=client.id)
            return None

        old = _snapshot(client)
        try:
            OnboardingStateMachine(client).confirm_email()
        except TransitionNotAllowed:
            logger.warning(
                "email_confirmation_out_of_order",
                client_id=client.id,
                status=client.onboarding_status.value,
            )
            return None

        await mark_confirmation_clicked(self.db, token)
        await self._audit(
            AuditAction.STATUS_CHANGE,
            client,
            "Email confirmation completed",
            old_values=old,
            new_values=_snapshot(client),
        )
        await self.db.flush()
        return client

    async def submit_for_review(self, client: Client) -> ClientApproval:
        """Move a confirmed client into admin review and notify the admins."""
        old = _snapshot(client)
        OnboardingStateMachine(client).submit_for_review()

        checks = {
            "kvk_validated": client.kvk_validated,
            "btw_validated": client.btw_validated,
            "iban_validated": client.iban_validated,
            "email_confirmed": client.email_confirmed,
        }
        approval = ClientApproval(
            client_id=client.id,
            status=ApprovalStatus.PENDING_APPROVAL,
            requested_by=self.context.user_id or client.user_id,
            requested_at=utcnow(),
            workflow_step=OnboardingStatus.ADMIN_REVIEW.value,
            priority=ApprovalPriority.NORMAL,
            validation_checks=checks,
        )
        self.db.add(approval)

        await send_email(
            self.db,
            EmailType.ADMIN_NOTIFICATION,
            settings.admin_notification_email,
            {
                "client_name": client.name,
                "company_name": client.company,
                "client_email": client.contact_email or client.email,
                "kvk_number": client.kvk_number,
                "vat_number": client.vat_number,
                "client_id": client.id,
                "checks": checks,
            },
            client_id=client.id,
        )
        await self._audit(
            AuditAction.STATUS_CHANGE,
            client,
            "Client onboarding completed, pending admin approval",
            old_values=old,
            new_values=_snapshot(client),
        )
        return approval

    async def resubmit(self, client: Client) -> WorkflowState:
        """Send a rejected client back to the start of onboarding."""
        old = _snapshot(client)
        OnboardingStateMachine(client).resubmit()
        client.onboarding_step = OnboardingStep.BASIC_INFO
        await self._audit(
            AuditAction.STATUS_CHANGE,
            client,
            "Client resubmitted after rejection",
            old_values=old,
            new_values=_snapshot(client),
        )
        await self.db.flush()
        return get_workflow_state(client)

    # ------------------------------------------------------------------
    # Admin decisions
    # ------------------------------------------------------------------

    async def _pending_approvals(self, client: Client) -> list[ClientApproval]:
        result = await self.db.execute(
            select(ClientApproval).where(
                ClientApproval.client_id == client.id,
                ClientApproval.status == ApprovalStatus.PENDING_APPROVAL,
            )
        )
        return list(result.scalars().all())

    async def approve_client(self, client: Client, notes: str | None = None) -> Client:
        """Approve a client under review and grant invoicing."""
        admin_id = self.context.user_id
        old = _snapshot(client)
        OnboardingStateMachine(client).approve(approved_by=admin_id, notes=notes)
        client.is_active = True

        now = utcnow()
        for approval in await self._pending_approvals(client):
            approval.status = ApprovalStatus.APPROVED
            approval.reviewed_by = admin_id
            approval.reviewed_at = now
            approval.approval_notes = notes

        await send_email(
            self.db,
            EmailType.APPROVAL_NOTIFICATION,
            client.email,
            {"client_name": client.name, "notes": notes},
            client_id=client.id,
        )
        await self._audit(
            AuditAction.APPROVE,
            client,
            "Client approved by admin",
            old_values=old,
            new_values={**_snapshot(client), "approval_notes": notes},
        )
        await self.db.flush()
        return client

    async def reject_client(self, client: Client, reason: str) -> Client:
        """Reject a client under review.

        Raises:
            ValueError: If no reason is given.
        """
        if not (reason or "").strip():
            raise ValueError("Rejection reason is required")
        reason = reason.strip()
        admin_id = self.context.user_id
        old = _snapshot(client)
        OnboardingStateMachine(client).reject(rejected_by=admin_id, reason=reason)

        now = utcnow()
        for approval in await self._pending_approvals(client):
            approval.status = ApprovalStatus.REJECTED
            approval.reviewed_by = admin_id
            approval.reviewed_at = now
            approval.rejection_reason = reason

        await send_email(
            self.db,
            EmailType.REJECTION_NOTIFICATION,
            client.email,
            {"client_name": client.name, "reason": reason},
            client_id=client.id,
        )
        await self._audit(
            AuditAction.REJECT,
            client,
            "Client rejected by admin",
            old_values=old,
            new_values={**_snapshot(client), "rejection_reason": reason},
        )
        await self.db.flush()
        return client

    async def bulk_decide(
        self,
        client_ids: list[int],
        action: str,
        notes: str | None = None,
        rejection_reason: str | None = None,
    ) -> list[BulkResult]:
        """Approve or reject several clients, reporting per client.

        Transitions are checked before any change is made to a client, so a
        failing client leaves no partial update behind.
        """
        results: list[BulkResult] = []
        for client_id in client_ids:
            try:
                client = await self.get_client(client_id)
                if action == "approve":
                    await self.approve_client(client, notes)
                    results.append(BulkResult(client_id, "approved"))
                elif not (rejection_reason or "").strip():
                    results.append(
                        BulkResult(client_id, "error", "Rejection reason required")
                    )
                else:
                    await self.reject_client(client, rejection_reason)
                    results.append(BulkResult(client_id, "rejected"))
            except (ClientNotFoundError, TransitionNotAllowed, ValueError) as exc:
                logger.warning(
                    "bulk_decision_failed", client_id=client_id, action=action, error=str(exc)
                )
                results.append(BulkResult(client_id, "error", str(exc)))
        return results

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_client(
        self,
        client: Client,
        kvk_client: "KvKClient",
        btw_client: "BTWClient",
    ) -> ClientValidation:
        """Run format checks and registry lookups and store the outcome.

        ``overall_score`` is the share of performed checks that passed.
        """
        checks: dict[str, CheckOutcome] = {}
        findings: list[str] = []
        now = utcnow()

        if client.kvk_number:
            kvk = await kvk_client.validate(client.kvk_number)
            checks["kvk"] = CheckOutcome(kvk.is_valid, kvk.to_dict())
            client.kvk_validated = kvk.is_valid
            client.kvk_validated_at = now if kvk.is_valid else None
            if not kvk.is_valid:
                findings.append(f"KvK: {kvk.error}")

        if client.vat_number:
            btw = await btw_client.validate(client.vat_number)
            confirmed = btw.is_valid and btw.source != "FALLBACK"
            checks["btw"] = CheckOutcome(confirmed, btw.to_dict())
            client.btw_validated = confirmed
            client.btw_validated_at = now if confirmed else None
            if btw.error or not btw.is_valid:
                findings.append(f"BTW: {btw.error or 'ongeldig'}")
            findings.extend(f"BTW: {warning}" for warning in btw.warnings)

        if client.iban:
            iban = validate_iban(client.iban)
            checks["iban"] = CheckOutcome(iban.is_valid, iban.to_dict())
            client.iban_validated = iban.is_valid
            client.iban_validated_at = now if iban.is_valid else None
            if not iban.is_valid:
                findings.append(f"IBAN: {iban.error}")

        email = validate_email_address(client.email)
        checks["email"] = CheckOutcome(email.is_valid, email.to_dict())
        if not email.is_valid:
            findings.append(f"E-mail: {email.error}")
        findings.extend(f"E-mail: {warning}" for warning in email.warnings)

        if client.phone:
            phone = validate_phone_number(client.phone, client.country)
            checks["phone"] = CheckOutcome(phone.is_valid, phone.to_dict())
            if not phone.is_valid:
                findings.append(f"Telefoon: {phone.error}")

        if client.address:
            address = validate_address(client.address)
            detail = address.to_dict()
            passed = address.is_valid
            if client.postal_code:
                postal = validate_postal_code(client.postal_code, client.country)
                detail["postal_code"] = postal.to_dict()
                passed = passed and postal.is_valid
                if not postal.is_valid:
                    findings.append(f"Postcode: {postal.error}")
            checks["address"] = CheckOutcome(passed, detail)
            if not address.is_valid:
                findings.append(f"Adres: {address.error}")

        passed_count = sum(1 for outcome in checks.values() if outcome.passed)
        score = passed_count / len(checks) if checks else 0.0

        def _check(name: str) -> dict[str, Any] | None:
            outcome = checks.get(name)
            if outcome is None:
                return None
            return {"passed": outcome.passed, **outcome.detail}

        validation = ClientValidation(
            client_id=client.id,
            validation_type=ValidationType.AUTOMATIC,
            status=ValidationStatus.PASSED
            if checks and passed_count == len(checks)
            else ValidationStatus.FAILED,
            kvk_check=_check("kvk"),
            btw_check=_check("btw"),
            iban_check=_check("iban"),
            email_check=_check("email"),
            phone_check=_check("phone"),
            address_check=_check("address"),
            overall_score=round(score, 4),
            findings=findings,
            requested_by=self.context.user_id,
        )
        self.db.add(validation)
        await self.db.flush()

        await self._audit(
            AuditAction.VALIDATE,
            client,
            "Client validation run",
            new_values={
                "validation_id": validation.id,
                "status": validation.status.value,
                "overall_score": validation.overall_score,
            },
        )
        logger.info(
            "client_validated",
            client_id=client.id,
            score=validation.overall_score,
            checks=len(checks),
        )
        return validation


async def get_admin_dashboard_stats(
    db: AsyncSession, now: datetime | None = None
) -> dict[str, Any]:
    """Aggregate counts for the admin approval dashboard."""
    now = now or utcnow()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = now - timedelta(days=7)

    async def _count(stmt: Any) -> int:
        return int((await db.execute(stmt)).scalar() or 0)

    pending_approvals = await _count(
        select(func.count(ClientApproval.id)).where(
            ClientApproval.status == ApprovalStatus.PENDING_APPROVAL
        )
    )
    pending_validations = await _count(
        select(func.count(ClientValidation.id)).where(
            ClientValidation.status == ValidationStatus.PENDING
        )
    )
    emails_sent_today = await _count(
        select(func.count(EmailLog.id)).where(
            EmailLog.sent_at >= today_start,
            EmailLog.status.in_(
                [
                    EmailStatus.SENT,
                    EmailStatus.DELIVERED,
                    EmailStatus.OPENED,
                    EmailStatus.CLICKED,
                ]
            ),
        )
    )
    emails_failed_today = await _count(
        select(func.count(EmailLog.id)).where(
            EmailLog.created_at >= today_start,
            EmailLog.status.in_([EmailStatus.FAILED, EmailStatus.BOUNCED]),
        )
    )
    new_clients = await _count(
        select(func.count(Client.id)).where(Client.created_at >= week_start)
    )
    completed_onboardings = await _count(
        select(func.count(Client.id)).where(Client.onboarding_completed_at >= week_start)
    )

    recent = await db.execute(
        select(ClientApproval.requested_at, ClientApproval.reviewed_at)
        .where(
            ClientApproval.status == ApprovalStatus.APPROVED,
            ClientApproval.reviewed_at.is_not(None),
        )
        .order_by(ClientApproval.reviewed_at.desc())
        .limit(50)
    )
    durations = [
        (reviewed - requested).total_seconds() / 3600
        for requested, reviewed in recent.all()
    ]
    average_hours = round(sum(durations) / len(durations), 2) if durations else 0.0

    async def _group(column: Any, model_id: Any) -> dict[str, int]:
        rows = await db.execute(select(column, func.count(model_id)).group_by(column))
        return {key.value: int(count) for key, count in rows.all()}

    return {
        "pending_approvals": pending_approvals,
        "pending_validations": pending_validations,
        "emails_sent_today": emails_sent_today,
        "emails_failed_today": emails_failed_today,
        "new_clients_this_week": new_clients,
        "completed_onboardings_this_week": completed_onboardings,
        "average_approval_time_hours": average_hours,
        "clients_by_status": await _group(Client.onboarding_status, Client.id),
        "validations_by_type": await _group(
            ClientValidation.validation_type, ClientValidation.id
        ),
        "emails_by_status": await _group(EmailLog.status, EmailLog.id),
    }
