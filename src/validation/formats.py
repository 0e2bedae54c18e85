"""Format validators for Dutch business identifiers and contact details.

Every validator returns a ``ValidationResult`` instead of raising, so forms can
show all problems at once. Error and warning texts are user-facing Dutch.

Example:
    >>> from src.validation.formats import validate_iban
    >>> result = validate_iban("nl91 abna 0417 1643 00")
    >>> result.normalized
    'NL91 ABNA 0417 1643 00'
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from email_validator import EmailNotValidError, validate_email


@dataclass
class ValidationResult:
    """Result of a single field validation.

    Attributes:
        is_valid: True if the value is acceptable.
        error: Reason the value was rejected.
        normalized: Canonical form of the value when valid.
        warnings: Non-blocking remarks about a valid value.
    """

    is_valid: bool
    error: str | None = None
    normalized: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "error": self.error,
            "normalized": self.normalized,
            "warnings": list(self.warnings),
        }


def _invalid(error: str) -> ValidationResult:
    return ValidationResult(is_valid=False, error=error)


# =============================================================================
# Business identifiers
# =============================================================================

KVK_PATTERN = re.compile(r"^[0-9]{8}$")

VAT_PATTERNS: dict[str, re.Pattern[str]] = {
    "NL": re.compile(r"^NL[0-9]{9}B[0-9]{2}$"),
    "DE": re.compile(r"^DE[0-9]{9}$"),
    "FR": re.compile(r"^FR[A-Z0-9]{2}[0-9]{9}$"),
    "BE": re.compile(r"^BE[0-9]{10}$"),
    "AT": re.compile(r"^ATU[0-9]{8}$"),
    "DK": re.compile(r"^DK[0-9]{8}$"),
    "ES": re.compile(r"^ES[A-Z][0-9]{7}[A-Z]$"),
    "FI": re.compile(r"^FI[0-9]{8}$"),
    "GB": re.compile(r"^GB([0-9]{9}|[0-9]{12}|GD[0-9]{3}|HA[0-9]{3})$"),
    "IT": re.compile(r"^IT[0-9]{11}$"),
    "LU": re.compile(r"^LU[0-9]{8}$"),
    "PT": re.compile(r"^PT[0-9]{9}$"),
    "SE": re.compile(r"^SE[0-9]{12}$"),
}


def clean_kvk_number(kvk_number: str) -> str:
    """Strip separators and left-pad to the 8-digit KvK format."""
    return re.sub(r"[\s-]", "", kvk_number or "").zfill(8)


def clean_vat_number(vat_number: str) -> str:
    """Strip spaces, dashes and dots and upper-case a VAT number."""
    return re.sub(r"[\s\-.]", "", vat_number or "").upper()


def validate_kvk_number(kvk_number: str) -> ValidationResult:
    if not (kvk_number or "").strip():
        return _invalid("KvK nummer is vereist")
    cleaned = clean_kvk_number(kvk_number)
    if not KVK_PATTERN.match(cleaned):
        return _invalid("KvK nummer moet 8 cijfers bevatten")
    return ValidationResult(is_valid=True, normalized=cleaned)


def validate_vat_number(vat_number: str) -> ValidationResult:
    """Check a VAT number against the pattern for its country prefix."""
    if not (vat_number or "").strip():
        return _invalid("BTW nummer is vereist")
    cleaned = clean_vat_number(vat_number)
    pattern = VAT_PATTERNS.get(cleaned[:2])
    if pattern is None or not pattern.match(cleaned):
        return _invalid("Ongeldig BTW nummer format")
    warnings = []
    if not cleaned.startswith("NL"):
        warnings.append("Buitenlands BTW nummer: controleer de verleggingsregeling")
    return ValidationResult(is_valid=True, normalized=cleaned, warnings=warnings)


# =============================================================================
# Banking
# =============================================================================

IBAN_LENGTHS: dict[str, int] = {
    "AD": 24, "AE": 23, "AL": 28, "AT": 20, "AZ": 28, "BA": 20, "BE": 16,
    "BG": 22, "BH": 22, "BR": 29, "BY": 28, "CH": 21, "CR": 22, "CY": 28,
    "CZ": 24, "DE": 22, "DK": 18, "DO": 28, "EE": 20, "EG": 29, "ES": 24,
    "FI": 18, "FO": 18, "FR": 27, "GB": 22, "GE": 22, "GI": 23, "GL": 18,
    "GR": 27, "GT": 28, "HR": 21, "HU": 28, "IE": 22, "IL": 23, "IS": 26,
    "IT": 27, "JO": 30, "KW": 30, "KZ": 20, "LB": 28, "LC": 32, "LI": 21,
    "LT": 20, "LU": 20, "LV": 21, "MC": 27, "MD": 24, "ME": 22, "MK": 19,
    "MR": 27, "MT": 31, "MU": 30, "NL": 18, "NO": 15, "PK": 24, "PL": 28,
    "PS": 29, "PT": 25, "QA": 29, "RO": 24, "RS": 22, "SA": 24, "SE": 24,
    "SI": 19, "SK": 24, "SM": 27, "TN": 24, "TR": 26, "UA": 29, "VG": 24,
    "XK": 20,
}

IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]+$")


def iban_checksum_valid(iban: str) -> bool:
    """ISO 13616 mod-97 check on a cleaned IBAN."""
    if not iban.isascii() or not iban.isalnum():
        return False
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(char, 36)) for char in rearranged)
    return int(digits) % 97 == 1


def validate_iban(iban: str) -> ValidationResult:
    if not (iban or "").strip():
        return _invalid("IBAN is vereist")

    cleaned = re.sub(r"[\s-]", "", iban).upper()
    if not IBAN_PATTERN.match(cleaned):
        return _invalid("IBAN moet beginnen met 2 letters gevolgd door 2 cijfers")

    country = cleaned[:2]
    expected_length = IBAN_LENGTHS.get(country)
    if expected_length is None:
        return _invalid(f"Landcode {country} wordt niet ondersteund")
    if len(cleaned) != expected_length:
        return _invalid(f"IBAN voor {country} moet {expected_length} karakters hebben")
    if not iban_checksum_valid(cleaned):
        return _invalid("IBAN checksum is ongeldig")

    formatted = " ".join(cleaned[i : i + 4] for i in range(0, len(cleaned), 4))
    return ValidationResult(is_valid=True, normalized=formatted)


def validate_account_holder(
    name: str, company_name: str | None = None
) -> ValidationResult:
    """Validate the bank account holder, warning when it differs from the company."""
    cleaned = (name or "").strip()
    if not cleaned:
        return _invalid("Rekeninghouder naam is vereist")
    if len(cleaned) < 2:
        return _invalid("Rekeninghouder naam moet minimaal 2 karakters hebben")
    if len(cleaned) > 100:
        return _invalid("Rekeninghouder naam mag maximaal 100 karakters hebben")

    warnings = []
    if company_name and string_similarity(cleaned.lower(), company_name.lower()) < 0.3:
        warnings.append("Rekeninghouder naam komt niet overeen met bedrijfsnaam")
    return ValidationResult(is_valid=True, normalized=cleaned, warnings=warnings)


def string_similarity(first: str, second: str) -> float:
    """Similarity in [0, 1] derived from the Levenshtein distance."""
    longer, shorter = (first, second) if len(first) > len(second) else (second, first)
    if not longer:
        return 1.0
    return (len(longer) - _levenshtein(longer, shorter)) / len(longer)


def _levenshtein(first: str, second: str) -> int:
    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            )
        previous = current
    return previous[-1]


# =============================================================================
# Contact details
# =============================================================================

def _format_phone(country_code: str) -> Callable[[str], str]:
    prefix = re.compile(rf"^\+?{country_code}|^00{country_code}|^0")

    def _format(phone: str) -> str:
        return f"+{country_code}{prefix.sub('', phone, count=1)}"

    return _format


PHONE_PATTERNS: dict[str, tuple[re.Pattern[str], Callable[[str], str]]] = {
    "NL": (re.compile(r"^(\+31|0031|31|0)[1-9][0-9]{8}$"), _format_phone("31")),
    "DE": (re.compile(r"^(\+49|0049|49|0)[0-9]{10,11}$"), _format_phone("49")),
    "FR": (re.compile(r"^(\+33|0033|33|0)[1-9][0-9]{8}$"), _format_phone("33")),
    "BE": (re.compile(r"^(\+32|0032|32|0)[1-9][0-9]{8}$"), _format_phone("32")),
    "GB": (re.compile(r"^(\+44|0044|44|0)[1-9][0-9]{9,10}$"), _format_phone("44")),
}


def validate_phone_number(phone: str, country: str = "NL") -> ValidationResult:
    """Validate a phone number and normalize it to E.164."""
    if not (phone or "").strip():
        return _invalid("Telefoonnummer is vereist")

    cleaned = re.sub(r"[\s\-().]", "", phone)
    entry = PHONE_PATTERNS.get(country)
    if entry is None:
        return _invalid(f"Landcode {country} wordt niet ondersteund")
    pattern, formatter = entry
    if not pattern.match(cleaned):
        return _invalid(f"Ongeldig telefoonnummer format voor {country}")
    return ValidationResult(is_valid=True, normalized=formatter(cleaned))


def _format_gb_postcode(code: str) -> str:
    match = re.match(r"^([A-Z]{1,2}[0-9][A-Z0-9]?)([0-9][A-Z]{2})$", code)
    return f"{match.group(1)} {match.group(2)}" if match else code


POSTAL_CODE_PATTERNS: dict[str, tuple[re.Pattern[str], Callable[[str], str]]] = {
    "NL": (re.compile(r"^[0-9]{4}[A-Z]{2}$"), lambda code: f"{code[:4]} {code[4:]}"),
    "DE": (re.compile(r"^[0-9]{5}$"), lambda code: code),
    "FR": (re.compile(r"^[0-9]{5}$"), lambda code: code),
    "BE": (re.compile(r"^[0-9]{4}$"), lambda code: code),
    "GB": (re.compile(r"^[A-Z]{1,2}[0-9][A-Z0-9]?[0-9][A-Z]{2}$"), _format_gb_postcode),
}


def validate_postal_code(postal_code: str, country: str = "NL") -> ValidationResult:
    if not (postal_code or "").strip():
        return _invalid("Postcode is vereist")

    cleaned = re.sub(r"\s", "", postal_code).upper()
    entry = POSTAL_CODE_PATTERNS.get(country)
    if entry is None:
        return _invalid(f"Landcode {country} wordt niet ondersteund")
    pattern, formatter = entry
    if not pattern.match(cleaned):
        return _invalid(f"Ongeldig postcode format voor {country}")
    return ValidationResult(is_valid=True, normalized=formatter(cleaned))


COMMON_EMAIL_TYPOS = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "yahooo.com": "yahoo.com",
    "hotmial.com": "hotmail.com",
    "outlok.com": "outlook.com",
}

DISPOSABLE_EMAIL_DOMAINS = frozenset(
    {"10minutemail.com", "guerrillamail.com", "mailinator.com", "tempmail.org"}
)


def validate_email_address(email: str) -> ValidationResult:
    """Validate email syntax and flag likely typos or throwaway domains."""
    cleaned = (email or "").strip().lower()
    if not cleaned:
        return _invalid("E-mailadres is vereist")

    try:
        validate_email(cleaned, check_deliverability=False)
    except EmailNotValidError:
        return _invalid("Ongeldig e-mailadres format")

    domain = cleaned.rsplit("@", 1)[1]
    warnings = []
    if suggestion := COMMON_EMAIL_TYPOS.get(domain):
        warnings.append(f"Bedoelde u {suggestion}?")
    if domain in DISPOSABLE_EMAIL_DOMAINS:
        warnings.append("Dit lijkt een tijdelijk e-mailadres te zijn")
    return ValidationResult(is_valid=True, normalized=cleaned, warnings=warnings)


DUTCH_LEGAL_FORMS = (
    "B.V.", "BV", "N.V.", "NV", "V.O.F.", "VOF", "C.V.", "CV",
    "STICHTING", "VERENIGING",
)


def validate_company_name(name: str) -> ValidationResult:
    cleaned = (name or "").strip()
    if not cleaned:
        return _invalid("Bedrijfsnaam is vereist")
    if len(cleaned) < 2:
        return _invalid("Bedrijfsnaam moet minimaal 2 karakters hebben")
    if len(cleaned) > 200:
        return _invalid("Bedrijfsnaam mag maximaal 200 karakters hebben")

    warnings = []
    upper = cleaned.upper()
    if not any(form in upper for form in DUTCH_LEGAL_FORMS):
        warnings.append("Overweeg om de rechtsvorm toe te voegen (bijv. B.V., VOF)")
    return ValidationResult(is_valid=True, normalized=cleaned, warnings=warnings)


def validate_address(address: str) -> ValidationResult:
    cleaned = (address or "").strip()
    if not cleaned:
        return _invalid("Adres is vereist")
    if len(cleaned) < 5:
        return _invalid("Adres moet minimaal 5 karakters hebben")
    if len(cleaned) > 200:
        return _invalid("Adres mag maximaal 200 karakters hebben")

    warnings = []
    if not re.search(r"[0-9]", cleaned):
        warnings.append("Zorg ervoor dat het huisnummer is opgenomen")
    return ValidationResult(is_valid=True, normalized=cleaned, warnings=warnings)


FIELD_VALIDATORS: dict[str, Callable[..., ValidationResult]] = {
    "kvk_number": validate_kvk_number,
    "vat_number": validate_vat_number,
    "iban": validate_iban,
    "phone": validate_phone_number,
    "postal_code": validate_postal_code,
    "email": validate_email_address,
    "company": validate_company_name,
    "address": validate_address,
}
