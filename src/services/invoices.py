"""Invoice creation, status changes and revenue figures.

Amounts are always recomputed here from the line items; totals sent by a
caller are never stored.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import extract, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.logging import get_logger
from src.invoicing.calculator import (
    LineItemInput,
    calculate_due_date,
    calculate_interest,
    calculate_invoice,
    generate_invoice_number,
    get_overdue_days,
    round_money,
    validate_line_items,
)
from src.models.audit import AuditAction
from src.models.client import Client
from src.models.invoice import DueDateType, Invoice, InvoiceItem, InvoiceStatus
from src.orchestration.invoice_lifecycle import STATUS_EVENTS, InvoiceStateMachine
from src.services.audit import AuditContext, log_action
from src.services.permissions import check_client_invoice_permission
from src.tax.year_config import get_tax_year_config

logger = get_logger(__name__)

OPEN_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE)
BILLED_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.OVERDUE, InvoiceStatus.PAID)
INVOICE_NUMBER_ATTEMPTS = 5


class InvoiceNotFoundError(LookupError):
    pass


class InvoiceValidationError(ValueError):
    """Line items or payment terms were rejected."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors))


class InvoicePermissionError(PermissionError):
    """The client may not be invoiced (yet)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvoiceStateError(ValueError):
    pass


class InvoiceNumberConflictError(ValueError):
    """No free invoice number was found after several attempts."""


@dataclass
class InvoiceDraft:
    """Everything needed to create an invoice, as entered by the user."""

    client_id: int
    items: list[LineItemInput]
    btw_rate: int = 21
    issue_date: date | None = None
    due_date_type: DueDateType = DueDateType.FOURTEEN_DAYS
    custom_due_date: date | None = None
    description: str | None = None
    notes: str | None = None


async def next_invoice_sequence(
    db: AsyncSession, user_id: int, year: int, prefix: str | None = None
) -> int:
    """Next free sequence number in the user's ``PREFIX-YEAR-`` series."""
    prefix = prefix or settings.invoice_number_prefix
    result = await db.execute(
        select(func.count(Invoice.id)).where(
            Invoice.user_id == user_id,
            Invoice.invoice_number.like(f"{prefix}-{year}-%"),
        )
    )
    return int(result.scalar() or 0) + 1


async def _insert_numbered(
    db: AsyncSession, user_id: int, year: int, build: Callable[[int], Invoice]
) -> Invoice:
    """Insert ``build(sequence)`` under the first invoice number not yet taken.

    Each attempt runs in a savepoint so a number claimed by a concurrent
    request only rolls back that attempt.
    """
    sequence = await next_invoice_sequence(db, user_id, year)
    for _ in range(INVOICE_NUMBER_ATTEMPTS):
        invoice = build(sequence)
        number = invoice.invoice_number
        try:
            async with db.begin_nested():
                db.add(invoice)
                await db.flush()
        except IntegrityError:
            logger.info(
                "invoice_number_taken",
                invoice_number=number,
                user_id=user_id,
            )
            sequence = max(sequence + 1, await next_invoice_sequence(db, user_id, year))
            continue
        return invoice
    raise InvoiceNumberConflictError("Could not assign an invoice number, please retry")


async def create_invoice(
    db: AsyncSession,
    user_id: int,
    draft: InvoiceDraft,
    context: AuditContext | None = None,
) -> Invoice:
    """Create a DRAFT invoice for an approved client.

    A refused attempt is written to the audit log as a security event before
    the error is raised.

    Raises:
        InvoicePermissionError: The user or the client may not be invoiced.
        InvoiceValidationError: Line items or due date are invalid.
        ValueError: The BTW rate is not allowed.
    """
    context = context or AuditContext(user_id=user_id)

    permission = await check_client_invoice_permission(db, user_id, draft.client_id)
    client = permission.client
    if permission.allowed and client is not None and client.user_id != user_id:
        permission.allowed = False
        permission.reason = "Client not found or access denied"
    if not permission.allowed:
        await log_action(
            db,
            AuditAction.SECURITY_EVENT,
            "Invoice",
            "BLOCKED_CREATION",
            context=context,
            new_values={"client_id": draft.client_id, "reason": permission.reason},
            note=f"Invoice creation blocked: {permission.reason}",
        )
        logger.warning(
            "invoice_creation_blocked",
            client_id=draft.client_id,
            reason=permission.reason,
        )
        raise InvoicePermissionError(permission.reason or "Invoice creation not allowed")

    validation = validate_line_items(draft.items)
    if not validation.is_valid:
        raise InvoiceValidationError(validation.errors)

    issue_date = draft.issue_date or date.today()
    try:
        due_date = calculate_due_date(issue_date, draft.due_date_type, draft.custom_due_date)
    except ValueError as exc:
        raise InvoiceValidationError([str(exc)]) from exc

    calculation = calculate_invoice(draft.items, draft.btw_rate)

    def build(sequence: int) -> Invoice:
        return Invoice(
            user_id=user_id,
            client_id=client.id,
            invoice_number=generate_invoice_number(
                settings.invoice_number_prefix, issue_date.year, sequence
            ),
            status=InvoiceStatus.DRAFT,
            issue_date=issue_date,
            due_date=due_date,
            due_date_type=draft.due_date_type,
            btw_rate=calculation.btw_rate,
            subtotal=calculation.subtotal,
            btw_amount=calculation.btw_amount,
            total_amount=calculation.total_amount,
            description=draft.description,
            notes=draft.notes,
            items=[
                InvoiceItem(
                    position=position,
                    description=line.description,
                    quantity=line.quantity,
                    rate=line.rate,
                    unit_type=line.unit_type,
                    amount=line.amount,
                )
                for position, line in enumerate(calculation.line_items)
            ],
        )

    invoice = await _insert_numbered(db, user_id, issue_date.year, build)
    client.total_invoiced = round_money(
        Decimal(client.total_invoiced or 0) + calculation.total_amount
    )
    await db.flush()

    await log_action(
        db,
        AuditAction.CREATE,
        "Invoice",
        invoice.id,
        context=context,
        new_values={
            "invoice_number": invoice.invoice_number,
            "client_id": client.id,
            "total_amount": str(invoice.total_amount),
            "status": invoice.status.value,
        },
        note="Invoice created with security verification",
    )
    logger.info(
        "invoice_created",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        client_id=client.id,
    )
    return invoice


async def get_invoice(db: AsyncSession, invoice_id: int, user_id: int | None = None) -> Invoice:
    """Fetch an invoice, optionally restricted to one owner."""
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None or (user_id is not None and invoice.user_id != user_id):
        raise InvoiceNotFoundError("Invoice not found")
    return invoice


async def list_invoices(
    db: AsyncSession,
    user_id: int,
    *,
    status: InvoiceStatus | None = None,
    client_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    filters = [Invoice.user_id == user_id]
    if status is not None:
        filters.append(Invoice.status == status)
    if client_id is not None:
        filters.append(Invoice.client_id == client_id)

    total = int(
        (await db.execute(select(func.count(Invoice.id)).where(*filters))).scalar() or 0
    )
    result = await db.execute(
        select(Invoice)
        .where(*filters)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def change_status(
    db: AsyncSession,
    invoice: Invoice,
    target: InvoiceStatus,
    context: AuditContext | None = None,
) -> Invoice:
    """Move an invoice to ``target`` through its state machine.

    Raises:
        InvoiceStateError: If ``target`` is DRAFT.
        TransitionNotAllowed: If the lifecycle has no such transition.
    """
    event = STATUS_EVENTS.get(target)
    if event is None:
        raise InvoiceStateError("Invoices cannot be moved back to DRAFT")

    previous = invoice.status
    client = await db.get(Client, invoice.client_id)
    InvoiceStateMachine(invoice, client).send(event)
    await db.flush()

    await log_action(
        db,
        AuditAction.STATUS_CHANGE,
        "Invoice",
        invoice.id,
        context=context,
        old_values={"status": previous.value},
        new_values={"status": invoice.status.value},
    )
    return invoice


async def mark_overdue_invoices(
    db: AsyncSession,
    user_id: int | None = None,
    today: date | None = None,
    context: AuditContext | None = None,
) -> list[Invoice]:
    """Mark every SENT invoice past its due date as OVERDUE."""
    today = today or date.today()
    stmt = select(Invoice).where(
        Invoice.status == InvoiceStatus.SENT, Invoice.due_date < today
    )
    if user_id is not None:
        stmt = stmt.where(Invoice.user_id == user_id)
    invoices = list((await db.execute(stmt)).scalars().all())

    for invoice in invoices:
        InvoiceStateMachine(invoice).mark_overdue()
    await db.flush()

    if invoices:
        await log_action(
            db,
            AuditAction.STATUS_CHANGE,
            "Invoice",
            "BATCH_OVERDUE",
            context=context,
            new_values={
                "status": InvoiceStatus.OVERDUE.value,
                "invoice_ids": [invoice.id for invoice in invoices],
            },
        )
    logger.info("invoices_marked_overdue", count=len(invoices))
    return invoices


def late_payment_summary(invoice: Invoice, today: date | None = None) -> dict[str, Any]:
    """Days overdue and accrued statutory interest for an open invoice."""
    if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.DRAFT):
        days = 0
    else:
        days = get_overdue_days(invoice.due_date, today)
    interest = calculate_interest(
        invoice.total_amount, days, settings.statutory_interest_rate
    )
    return {"days_overdue": days, "statutory_interest": interest}


async def get_dashboard_stats(
    db: AsyncSession, user_id: int, today: date | None = None
) -> dict[str, Any]:
    """Invoice and revenue figures for a user's dashboard.

    Revenue counts invoices that have been sent; drafts and cancelled
    invoices are left out. ``kor_eligible`` compares this year's turnover
    excluding BTW with the small business scheme threshold.
    """
    today = today or date.today()
    config = get_tax_year_config(today.year)
    billed = (Invoice.user_id == user_id, Invoice.status.in_(BILLED_STATUSES))
    this_year = extract("year", Invoice.issue_date) == today.year

    async def scalar(stmt) -> Any:
        return (await db.execute(stmt)).scalar()

    total_invoices = await scalar(
        select(func.count(Invoice.id)).where(Invoice.user_id == user_id)
    )
    pending_invoices = await scalar(
        select(func.count(Invoice.id)).where(
            Invoice.user_id == user_id, Invoice.status.in_(OPEN_STATUSES)
        )
    )
    overdue_invoices = await scalar(
        select(func.count(Invoice.id)).where(
            Invoice.user_id == user_id, Invoice.status == InvoiceStatus.OVERDUE
        )
    )
    total_clients = await scalar(
        select(func.count(Client.id)).where(Client.user_id == user_id)
    )
    total_revenue = await scalar(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(*billed)
    )
    outstanding = await scalar(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(
            Invoice.user_id == user_id,
            Invoice.status.in_((InvoiceStatus.SENT, InvoiceStatus.OVERDUE)),
        )
    )
    year_revenue = await scalar(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(*billed, this_year)
    )
    year_turnover = await scalar(
        select(func.coalesce(func.sum(Invoice.subtotal), 0)).where(*billed, this_year)
    )
    btw_owed = await scalar(
        select(func.coalesce(func.sum(Invoice.btw_amount), 0)).where(*billed, this_year)
    )

    return {
        "total_invoices": int(total_invoices or 0),
        "pending_invoices": int(pending_invoices or 0),
        "overdue_invoices": int(overdue_invoices or 0),
        "total_clients": int(total_clients or 0),
        "total_revenue": round_money(Decimal(str(total_revenue))),
        "outstanding_amount": round_money(Decimal(str(outstanding))),
        "current_year_revenue": round_money(Decimal(str(year_revenue))),
        "current_year_turnover": round_money(Decimal(str(year_turnover))),
        "btw_owed": round_money(Decimal(str(btw_owed))),
        "kor_threshold": config.kor_turnover_threshold,
        "kor_eligible": Decimal(str(year_turnover)) < config.kor_turnover_threshold,
    }
