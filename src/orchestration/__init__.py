"""Status lifecycles for clients and invoices."""

from src.orchestration.invoice_lifecycle import STATUS_EVENTS, InvoiceStateMachine
from src.orchestration.onboarding import OnboardingStateMachine, TransitionNotAllowed

__all__ = [
    "InvoiceStateMachine",
    "OnboardingStateMachine",
    "STATUS_EVENTS",
    "TransitionNotAllowed",
]
