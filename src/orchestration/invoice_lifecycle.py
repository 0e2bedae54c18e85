"""Invoice status state machine.

Transitions:
- send: draft -> sent
- mark_overdue: sent -> overdue
- pay: sent/overdue -> paid (final)
- cancel: draft/sent/overdue -> cancelled (final)
"""

from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from statemachine import State, StateMachine

from src.models.base import utcnow
from src.models.invoice import InvoiceStatus

if TYPE_CHECKING:
    from src.models.client import Client
    from src.models.invoice import Invoice

logger = structlog.get_logger()


class InvoiceStateMachine(StateMachine):
    """Lifecycle of an invoice, bound to its ``status`` column.

    Cancelling takes the invoice total back off the client's
    ``total_invoiced``, so the client must be passed when it is known.
    """

    draft = State(initial=True, value=InvoiceStatus.DRAFT)
    sent = State(value=InvoiceStatus.SENT)
    overdue = State(value=InvoiceStatus.OVERDUE)
    paid = State(final=True, value=InvoiceStatus.PAID)
    cancelled = State(final=True, value=InvoiceStatus.CANCELLED)

    send = draft.to(sent)
    mark_overdue = sent.to(overdue)
    pay = sent.to(paid) | overdue.to(paid)
    cancel = draft.to(cancelled) | sent.to(cancelled) | overdue.to(cancelled)

    def __init__(self, invoice: "Invoice", client: "Client | None" = None) -> None:
        self.invoice = invoice
        self.client = client
        super().__init__(model=invoice, state_field="status")

    def on_send(self) -> None:
        self.invoice.sent_at = utcnow()
        logger.info(
            "invoice_sent",
            invoice_id=self.invoice.id,
            invoice_number=self.invoice.invoice_number,
        )

    def on_mark_overdue(self) -> None:
        logger.info("invoice_overdue", invoice_id=self.invoice.id, due_date=str(self.invoice.due_date))

    def on_pay(self) -> None:
        self.invoice.paid_at = utcnow()
        logger.info("invoice_paid", invoice_id=self.invoice.id)

    def on_cancel(self) -> None:
        self.invoice.cancelled_at = utcnow()
        if self.client is not None:
            remaining = Decimal(self.client.total_invoiced or 0) - Decimal(
                self.invoice.total_amount
            )
            self.client.total_invoiced = max(remaining, Decimal("0.00"))
        logger.info("invoice_cancelled", invoice_id=self.invoice.id)


STATUS_EVENTS = {
    InvoiceStatus.SENT: "send",
    InvoiceStatus.OVERDUE: "mark_overdue",
    InvoiceStatus.PAID: "pay",
    InvoiceStatus.CANCELLED: "cancel",
}
"""Event that moves an invoice into each target status."""
