"""Field format validation for client and invoice data."""

from src.validation.formats import (
    FIELD_VALIDATORS,
    ValidationResult,
    clean_kvk_number,
    clean_vat_number,
    validate_account_holder,
    validate_address,
    validate_company_name,
    validate_email_address,
    validate_iban,
    validate_kvk_number,
    validate_phone_number,
    validate_postal_code,
    validate_vat_number,
)

__all__ = [
    "FIELD_VALIDATORS",
    "ValidationResult",
    "clean_kvk_number",
    "clean_vat_number",
    "validate_account_holder",
    "validate_address",
    "validate_company_name",
    "validate_email_address",
    "validate_iban",
    "validate_kvk_number",
    "validate_phone_number",
    "validate_postal_code",
    "validate_vat_number",
]
