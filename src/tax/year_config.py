"""Dutch tax year constants for invoicing.

Centralizes the BTW (VAT) rates and turnover thresholds so they are not
hardcoded throughout the codebase.

Example:
    >>> from src.tax.year_config import get_tax_year_config
    >>> config = get_tax_year_config(2025)
    >>> config.btw_rate_high
    21
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TaxYearConfig:
    """Tax year-specific rates and thresholds.

    Attributes:
        tax_year: The tax year these values apply to.
        btw_rate_high: Standard BTW percentage.
        btw_rate_low: Reduced BTW percentage.
        btw_rate_zero: Zero rate (exports, intra-EU supplies).
        kor_turnover_threshold: Annual turnover under which the small business
            scheme (kleineondernemersregeling) may be used.
    """

    tax_year: int
    btw_rate_high: int = 21
    btw_rate_low: int = 9
    btw_rate_zero: int = 0
    kor_turnover_threshold: Decimal = Decimal("20000")

    @property
    def btw_rates(self) -> tuple[int, ...]:
        """All rates an invoice may use, lowest first."""
        return (self.btw_rate_zero, self.btw_rate_low, self.btw_rate_high)


TAX_YEAR_2024 = TaxYearConfig(tax_year=2024)

TAX_YEAR_2025 = TaxYearConfig(tax_year=2025)

TAX_YEAR_2026 = TaxYearConfig(tax_year=2026)

# Registry of available tax year configurations
TAX_YEAR_CONFIGS: dict[int, TaxYearConfig] = {
    2024: TAX_YEAR_2024,
    2025: TAX_YEAR_2025,
    2026: TAX_YEAR_2026,
}


def get_tax_year_config(year: int) -> TaxYearConfig:
    """Get configuration for a specific tax year.

    Years after the newest configured year reuse the newest configuration,
    since rates rarely change and invoices must still be issuable.

    Raises:
        ValueError: If the year predates every configured year.
    """
    if year in TAX_YEAR_CONFIGS:
        return TAX_YEAR_CONFIGS[year]
    latest = max(TAX_YEAR_CONFIGS)
    if year > latest:
        return TAX_YEAR_CONFIGS[latest]
    available = sorted(TAX_YEAR_CONFIGS.keys())
    raise ValueError(
        f"No tax configuration for year {year}. Available years: {available}"
    )
