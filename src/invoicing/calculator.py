"""Invoice arithmetic for Dutch invoices.

This module provides pure functions for:
- Line amounts, subtotal, BTW and total (rounded half-up to cents)
- Due dates from payment terms
- Line item validation with user-facing Dutch messages
- Invoice numbering
- Statutory interest and overdue days

All monetary values use Decimal for precision.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from src.models.invoice import DueDateType, UnitType
from src.tax.year_config import get_tax_year_config

CENT = Decimal("0.01")

BTW_RATES = {
    "HIGH": 21,
    "LOW": 9,
    "ZERO": 0,
}

DUE_DATE_OFFSETS = {
    DueDateType.SEVEN_DAYS: 7,
    DueDateType.FOURTEEN_DAYS: 14,
    DueDateType.THIRTY_DAYS: 30,
}

DEFAULT_PAYMENT_DAYS = 14
MAX_DESCRIPTION_LENGTH = 500


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class LineItemInput:
    """A line item as entered by the user, before amounts are computed."""

    description: str
    quantity: Decimal
    rate: Decimal
    unit_type: UnitType = UnitType.HOURS


@dataclass
class CalculatedLineItem:
    description: str
    quantity: Decimal
    rate: Decimal
    unit_type: UnitType
    amount: Decimal


@dataclass
class InvoiceCalculation:
    """Computed amounts for a whole invoice.

    Attributes:
        subtotal: Sum of rounded line amounts, excluding BTW.
        btw_rate: Percentage applied to the subtotal.
        btw_amount: BTW over the subtotal.
        total_amount: Subtotal plus BTW.
        line_items: Line items with their computed amounts.
    """

    subtotal: Decimal
    btw_rate: int
    btw_amount: Decimal
    total_amount: Decimal
    line_items: list[CalculatedLineItem] = field(default_factory=list)


@dataclass
class LineItemValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


# =============================================================================
# Amounts
# =============================================================================


def round_money(value: Decimal) -> Decimal:
    """Round to cents, halves away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_line_item(quantity: Decimal, rate: Decimal) -> Decimal:
    return round_money(Decimal(quantity) * Decimal(rate))


def calculate_subtotal(items: Iterable[LineItemInput]) -> Decimal:
    """Sum of the individually rounded line amounts."""
    total = Decimal("0.00")
    for item in items:
        total += calculate_line_item(item.quantity, item.rate)
    return round_money(total)


def calculate_btw(subtotal: Decimal, btw_rate: int = BTW_RATES["HIGH"]) -> Decimal:
    return round_money(Decimal(subtotal) * Decimal(btw_rate) / Decimal(100))


def calculate_total(subtotal: Decimal, btw_amount: Decimal) -> Decimal:
    return round_money(Decimal(subtotal) + Decimal(btw_amount))


def validate_btw_rate(btw_rate: int, year: int | None = None) -> None:
    """Reject rates that are not valid Dutch BTW rates for the year.

    Raises:
        ValueError: If the rate is not one of the configured rates.
    """
    config = get_tax_year_config(year or date.today().year)
    if btw_rate not in config.btw_rates:
        raise ValueError(
            f"Ongeldig BTW tarief {btw_rate}%. Toegestaan: "
            + ", ".join(f"{rate}%" for rate in config.btw_rates)
        )


def calculate_invoice(
    items: list[LineItemInput], btw_rate: int = BTW_RATES["HIGH"]
) -> InvoiceCalculation:
    """Compute every amount on an invoice from its line items.

    Args:
        items: Line items as entered.
        btw_rate: BTW percentage (21, 9 or 0).

    Returns:
        InvoiceCalculation with per-line amounts and totals.
    """
    validate_btw_rate(btw_rate)
    calculated = [
        CalculatedLineItem(
            description=item.description.strip(),
            quantity=Decimal(item.quantity),
            rate=Decimal(item.rate),
            unit_type=item.unit_type,
            amount=calculate_line_item(item.quantity, item.rate),
        )
        for item in items
    ]
    subtotal = calculate_subtotal(items)
    btw_amount = calculate_btw(subtotal, btw_rate)
    return InvoiceCalculation(
        subtotal=subtotal,
        btw_rate=btw_rate,
        btw_amount=btw_amount,
        total_amount=calculate_total(subtotal, btw_amount),
        line_items=calculated,
    )


def validate_line_items(items: list[LineItemInput]) -> LineItemValidation:
    """Check line items, collecting every problem with its 1-based line number."""
    errors: list[str] = []
    if not items:
        errors.append("Er moet minimaal één regel aanwezig zijn")

    for index, item in enumerate(items, start=1):
        if not (item.description or "").strip():
            errors.append(f"Regel {index}: Omschrijving is verplicht")
        if item.quantity <= 0:
            errors.append(f"Regel {index}: Aantal moet groter zijn dan 0")
        if item.rate <= 0:
            errors.append(f"Regel {index}: Tarief moet groter zijn dan 0")
        if item.description and len(item.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(
                f"Regel {index}: Omschrijving is te lang (max {MAX_DESCRIPTION_LENGTH} karakters)"
            )

    return LineItemValidation(is_valid=not errors, errors=errors)


# =============================================================================
# Dates and numbering
# =============================================================================


def calculate_due_date(
    issue_date: date,
    due_date_type: DueDateType,
    custom_date: date | None = None,
) -> date:
    """Derive the due date from the payment term.

    Raises:
        ValueError: If the term is CUSTOM and no custom date was given, or the
            custom date lies before the issue date.
    """
    if due_date_type == DueDateType.CUSTOM:
        if custom_date is None:
            raise ValueError("Aangepaste vervaldatum is verplicht")
        if custom_date < issue_date:
            raise ValueError("Vervaldatum mag niet voor de factuurdatum liggen")
        return custom_date
    days = DUE_DATE_OFFSETS.get(due_date_type, DEFAULT_PAYMENT_DAYS)
    return issue_date + timedelta(days=days)


def generate_invoice_number(prefix: str, year: int, sequence: int) -> str:
    """Format an invoice number such as ``INV-2025-0007``."""
    return f"{prefix}-{year}-{sequence:04d}"


def preview_invoice_number(year: int) -> str:
    return generate_invoice_number("PREVIEW", year, 0)


# =============================================================================
# Late payment
# =============================================================================


def calculate_interest(
    amount: Decimal, days_late: int, annual_rate: float | Decimal = 12
) -> Decimal:
    """Simple statutory interest over ``days_late`` days."""
    if days_late <= 0:
        return Decimal("0.00")
    daily_rate = Decimal(str(annual_rate)) / Decimal(365) / Decimal(100)
    return round_money(Decimal(amount) * daily_rate * days_late)


def days_between(first: date | datetime, second: date | datetime) -> int:
    """Whole days between two moments, rounding partial days up."""
    seconds = abs((second - first).total_seconds())
    return math.ceil(seconds / 86400)


def is_overdue(due_date: date, today: date | None = None) -> bool:
    return (today or date.today()) > due_date


def get_overdue_days(due_date: date, today: date | None = None) -> int:
    today = today or date.today()
    if not is_overdue(due_date, today):
        return 0
    return days_between(due_date, today)


# =============================================================================
# Formatting
# =============================================================================


def format_currency(amount: Decimal, symbol: str = "€") -> str:
    """Format an amount the Dutch way, e.g. ``€ 1.234,56``."""
    rounded = round_money(amount)
    sign = "-" if rounded < 0 else ""
    whole, cents = f"{abs(rounded):.2f}".split(".")
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    return f"{symbol} {sign}{'.'.join(groups)},{cents}"
