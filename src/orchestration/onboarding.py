"""Client onboarding state machine.

Provides declarative onboarding transitions with callbacks for the
client-side effects (approval metadata, invoice permission, logging).
The machine is bound to the client's ``onboarding_status`` column, so a
transition writes the new status straight onto the model.
"""

from typing import TYPE_CHECKING

import structlog
from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from src.models.base import utcnow
from src.models.client import ApprovalStatus, OnboardingStatus

if TYPE_CHECKING:
    from src.models.client import Client

logger = structlog.get_logger()


class OnboardingStateMachine(StateMachine):
    """State machine for the client onboarding lifecycle.

    States match OnboardingStatus:
    - pending_validation: client created, details being validated
    - email_sent: confirmation email sent to the client
    - client_confirmed: client clicked the confirmation link
    - admin_review: onboarding completed, waiting for an admin decision
    - approved: client may be invoiced (final)
    - rejected: admin rejected the client (not final, allows resubmission)

    Transitions:
    - send_confirmation: pending_validation -> email_sent (resend stays in email_sent)
    - confirm_email: email_sent -> client_confirmed
    - submit_for_review: client_confirmed -> admin_review
    - approve: admin_review -> approved
    - reject: admin_review -> rejected
    - resubmit: rejected -> pending_validation
    """

    pending_validation = State(initial=True, value=OnboardingStatus.PENDING_VALIDATION)
    email_sent = State(value=OnboardingStatus.EMAIL_SENT)
    client_confirmed = State(value=OnboardingStatus.CLIENT_CONFIRMED)
    admin_review = State(value=OnboardingStatus.ADMIN_REVIEW)
    approved = State(final=True, value=OnboardingStatus.APPROVED)
    rejected = State(value=OnboardingStatus.REJECTED)

    send_confirmation = pending_validation.to(email_sent) | email_sent.to.itself()
    confirm_email = email_sent.to(client_confirmed)
    submit_for_review = client_confirmed.to(admin_review)
    approve = admin_review.to(approved)
    reject = admin_review.to(rejected)
    resubmit = rejected.to(pending_validation)

    def __init__(self, client: "Client") -> None:
        """Bind the machine to a client, starting from its stored status."""
        self.client = client
        super().__init__(model=client, state_field="onboarding_status")

    def on_send_confirmation(self) -> None:
        logger.info("onboarding_confirmation_sent", client_id=self.client.id)

    def on_confirm_email(self) -> None:
        now = utcnow()
        self.client.email_confirmed = True
        self.client.email_confirmed_at = now
        self.client.email_confirmation_token = None
        self.client.email_confirmation_expires_at = None
        logger.info("onboarding_email_confirmed", client_id=self.client.id)

    def on_submit_for_review(self) -> None:
        self.client.onboarding_completed_at = utcnow()
        self.client.approval_status = ApprovalStatus.PENDING_APPROVAL
        logger.info("onboarding_submitted_for_review", client_id=self.client.id)

    def on_approve(self, approved_by: int, notes: str | None = None) -> None:
        """Grant invoicing rights and record who approved.

        Args:
            approved_by: Admin user id.
            notes: Optional approval notes.
        """
        now = utcnow()
        self.client.approval_status = ApprovalStatus.APPROVED
        self.client.approved_at = now
        self.client.approved_by = approved_by
        self.client.approval_notes = notes
        self.client.rejection_reason = None
        self.client.can_create_invoices = True
        self.client.invoice_permission_granted_at = now
        self.client.invoice_permission_granted_by = approved_by
        logger.info("client_approved", client_id=self.client.id, approved_by=approved_by)

    def on_reject(self, rejected_by: int, reason: str) -> None:
        self.client.approval_status = ApprovalStatus.REJECTED
        self.client.rejection_reason = reason
        self.client.can_create_invoices = False
        logger.warning(
            "client_rejected",
            client_id=self.client.id,
            rejected_by=rejected_by,
            reason=reason,
        )

    def on_resubmit(self) -> None:
        self.client.approval_status = ApprovalStatus.PENDING_APPROVAL
        self.client.rejection_reason = None
        self.client.onboarding_completed_at = None
        logger.info("onboarding_resubmitted", client_id=self.client.id)


__all__ = ["OnboardingStateMachine", "TransitionNotAllowed"]
