"""Invoice calculation and numbering."""

from src.invoicing.calculator import (
    BTW_RATES,
    CalculatedLineItem,
    InvoiceCalculation,
    LineItemInput,
    calculate_btw,
    calculate_due_date,
    calculate_interest,
    calculate_invoice,
    calculate_line_item,
    calculate_subtotal,
    calculate_total,
    days_between,
    format_currency,
    generate_invoice_number,
    get_overdue_days,
    is_overdue,
    preview_invoice_number,
    validate_btw_rate,
    validate_line_items,
)

__all__ = [
    "BTW_RATES",
    "CalculatedLineItem",
    "InvoiceCalculation",
    "LineItemInput",
    "calculate_btw",
    "calculate_due_date",
    "calculate_interest",
    "calculate_invoice",
    "calculate_line_item",
    "calculate_subtotal",
    "calculate_total",
    "days_between",
    "format_currency",
    "generate_invoice_number",
    "get_overdue_days",
    "is_overdue",
    "preview_invoice_number",
    "validate_btw_rate",
    "validate_line_items",
]
