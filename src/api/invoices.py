"""Invoice endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    Pagination,
    get_audit_context,
    get_db,
    get_pagination,
    require_permissions,
)
from src.invoicing.calculator import (
    LineItemInput,
    calculate_due_date,
    calculate_invoice,
    format_currency,
    preview_invoice_number,
    validate_line_items,
)
from src.models.invoice import DueDateType, Invoice, InvoiceStatus, UnitType
from src.models.user import User
from src.services.audit import AuditContext
from src.services.invoices import (
    InvoiceDraft,
    InvoiceNotFoundError,
    InvoicePermissionError,
    InvoiceStateError,
    InvoiceValidationError,
    change_status,
    create_invoice,
    get_invoice,
    late_payment_summary,
    list_invoices,
    mark_overdue_invoices,
)
from src.services.permissions import PERMISSIONS as P

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


class LineItemRequest(BaseModel):
    description: str = Field(max_length=500)
    quantity: Decimal
    rate: Decimal
    unit_type: UnitType = UnitType.HOURS

    def to_input(self) -> LineItemInput:
        return LineItemInput(
            description=self.description,
            quantity=self.quantity,
            rate=self.rate,
            unit_type=self.unit_type,
        )


class InvoiceCreateRequest(BaseModel):
    """Payload for a new invoice. Amounts are computed server-side."""

    client_id: int = Field(gt=0)
    items: list[LineItemRequest] = Field(default_factory=list, max_length=100)
    btw_rate: int = 21
    issue_date: date | None = None
    due_date_type: DueDateType = DueDateType.FOURTEEN_DAYS
    custom_due_date: date | None = None
    description: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)


class InvoiceCalculateRequest(BaseModel):
    items: list[LineItemRequest] = Field(default_factory=list, max_length=100)
    btw_rate: int = 21
    issue_date: date | None = None
    due_date_type: DueDateType = DueDateType.FOURTEEN_DAYS
    custom_due_date: date | None = None


class InvoiceStatusRequest(BaseModel):
    status: InvoiceStatus


class LineItemResponse(BaseModel):
    description: str
    quantity: Decimal
    rate: Decimal
    unit_type: str
    amount: Decimal


class InvoiceResponse(BaseModel):
    """Invoice response model."""

    id: int
    client_id: int
    invoice_number: str
    status: str
    issue_date: date
    due_date: date
    due_date_type: str
    btw_rate: int
    subtotal: Decimal
    btw_amount: Decimal
    total_amount: Decimal
    total_formatted: str
    description: str | None
    notes: str | None
    items: list[LineItemResponse]
    days_overdue: int
    statutory_interest: Decimal
    sent_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime


class InvoiceListResponse(BaseModel):
    items: list[InvoiceResponse]
    total: int
    limit: int
    offset: int


class InvoiceCalculationResponse(BaseModel):
    invoice_number: str
    subtotal: Decimal
    btw_rate: int
    btw_amount: Decimal
    total_amount: Decimal
    due_date: date
    items: list[LineItemResponse]


def _to_invoice_response(invoice: Invoice) -> InvoiceResponse:
    late = late_payment_summary(invoice)
    return InvoiceResponse(
        id=invoice.id,
        client_id=invoice.client_id,
        invoice_number=invoice.invoice_number,
        status=invoice.status.value,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        due_date_type=invoice.due_date_type.value,
        btw_rate=invoice.btw_rate,
        subtotal=invoice.subtotal,
        btw_amount=invoice.btw_amount,
        total_amount=invoice.total_amount,
        total_formatted=format_currency(invoice.total_amount),
        description=invoice.description,
        notes=invoice.notes,
        items=[
            LineItemResponse(
                description=item.description,
                quantity=item.quantity,
                rate=item.rate,
                unit_type=item.unit_type.value,
                amount=item.amount,
            )
            for item in invoice.items
        ],
        days_overdue=late["days_overdue"],
        statutory_interest=late["statutory_interest"],
        sent_at=invoice.sent_at,
        paid_at=invoice.paid_at,
        cancelled_at=invoice.cancelled_at,
        created_at=invoice.created_at,
    )


@router.get("", response_model=InvoiceListResponse)
async def get_invoices(
    invoice_status: InvoiceStatus | None = Query(default=None, alias="status"),
    client_id: int | None = Query(default=None, gt=0),
    page: Pagination = Depends(get_pagination),
    user: User = Depends(require_permissions(P.INVOICE_READ)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceListResponse:
    invoices, total = await list_invoices(
        db,
        user.id,
        status=invoice_status,
        client_id=client_id,
        limit=page.limit,
        offset=page.offset,
    )
    return InvoiceListResponse(
        items=[_to_invoice_response(invoice) for invoice in invoices],
        total=total,
        limit=page.limit,
        offset=page.offset,
    )


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def post_invoice(
    payload: InvoiceCreateRequest,
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """Create an invoice for an approved client.

    Refused attempts stay in the audit log, so that entry is committed
    before the 403 is returned.
    """
    draft = InvoiceDraft(
        client_id=payload.client_id,
        items=[item.to_input() for item in payload.items],
        btw_rate=payload.btw_rate,
        issue_date=payload.issue_date,
        due_date_type=payload.due_date_type,
        custom_due_date=payload.custom_due_date,
        description=payload.description,
        notes=payload.notes,
    )
    try:
        invoice = await create_invoice(db, user.id, draft, context)
    except InvoicePermissionError as exc:
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Invoice creation not allowed: {exc.reason}",
        ) from exc
    except InvoiceValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"message": "Validation failed", "errors": exc.errors},
        ) from exc
    return _to_invoice_response(invoice)


@router.post("/calculate", response_model=InvoiceCalculationResponse)
async def calculate_preview(
    payload: InvoiceCalculateRequest,
    _: User = Depends(require_permissions(P.INVOICE_READ)),
) -> InvoiceCalculationResponse:
    """Preview amounts and due date without saving anything."""
    items = [item.to_input() for item in payload.items]
    validation = validate_line_items(items)
    if not validation.is_valid:
        raise HTTPException(
            status_code=400,
            detail={"message": "Validation failed", "errors": validation.errors},
        )
    issue_date = payload.issue_date or date.today()
    due_date = calculate_due_date(issue_date, payload.due_date_type, payload.custom_due_date)
    calculation = calculate_invoice(items, payload.btw_rate)
    return InvoiceCalculationResponse(
        invoice_number=preview_invoice_number(issue_date.year),
        subtotal=calculation.subtotal,
        btw_rate=calculation.btw_rate,
        btw_amount=calculation.btw_amount,
        total_amount=calculation.total_amount,
        due_date=due_date,
        items=[
            LineItemResponse(
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                unit_type=line.unit_type.value,
                amount=line.amount,
            )
            for line in calculation.line_items
        ],
    )


@router.post("/mark-overdue")
async def mark_overdue(
    user: User = Depends(require_permissions(P.INVOICE_UPDATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Mark the user's sent invoices past their due date as overdue."""
    invoices = await mark_overdue_invoices(db, user.id, context=context)
    return {"updated": len(invoices), "invoice_ids": [invoice.id for invoice in invoices]}


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice_detail(
    invoice_id: int,
    user: User = Depends(require_permissions(P.INVOICE_READ)),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    try:
        invoice = await get_invoice(db, invoice_id, user.id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=404, detail="Invoice not found") from None
    return _to_invoice_response(invoice)


@router.post("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: int,
    payload: InvoiceStatusRequest,
    user: User = Depends(require_permissions(P.INVOICE_UPDATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """Move an invoice along its lifecycle; invalid moves return 409."""
    try:
        invoice = await get_invoice(db, invoice_id, user.id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=404, detail="Invoice not found") from None
    try:
        await change_status(db, invoice, payload.status, context)
    except InvoiceStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_invoice_response(invoice)
