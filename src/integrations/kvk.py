"""Client for the OpenKvK company registry (https://overheid.io/documentatie/openkvk).

Lookups never raise for registry problems. Every outcome, including
timeouts and rate limiting, is a ``KvKValidationResult``; failures carry
``source="fallback"`` and a Dutch error message suitable for the UI.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import pybreaker

from src.core.config import settings
from src.core.logging import get_logger
from src.core.redis import hit_rate_limit
from src.integrations.breaker import RegistryCircuitBreaker
from src.integrations.cache import RegistryCache
from src.models.base import utcnow
from src.validation.formats import KVK_PATTERN, clean_kvk_number

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = get_logger(__name__)

USER_AGENT = "ZZP-Trust/1.0"

SOURCE_API = "openkvk"
SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"


class KvKApiError(Exception):
    """Registry call failed; ``code`` mirrors the failure class."""

    def __init__(self, code: str, message: str, status: int | None = None) -> None:
        self.code = code
        self.message = message
        self.status = status
        super().__init__(message)

    @property
    def is_outage(self) -> bool:
        """True for failures that say the registry is unhealthy."""
        return self.code in {"TIMEOUT", "NETWORK_ERROR", "API_ERROR"}


@dataclass
class KvKAddress:
    street: str | None = None
    house_number: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = "Nederland"


@dataclass
class KvKCompanyData:
    kvk_number: str
    name: str
    trade_name: str | None = None
    legal_form: str | None = None
    business_status: str | None = None
    address: KvKAddress = field(default_factory=KvKAddress)
    website: str | None = None
    sbi_codes: list[dict[str, Any]] = field(default_factory=list)
    establishment_date: str | None = None
    employee_count: str | None = None


@dataclass
class KvKValidationResult:
    """Outcome of one KvK lookup."""

    is_valid: bool
    source: str
    validated_at: datetime
    company_data: KvKCompanyData | None = None
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["validated_at"] = self.validated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KvKValidationResult:
        company = data.get("company_data")
        company_data = None
        if company:
            company_data = KvKCompanyData(
                **{**company, "address": KvKAddress(**(company.get("address") or {}))}
            )
        return cls(
            is_valid=data["is_valid"],
            source=data["source"],
            validated_at=datetime.fromisoformat(data["validated_at"]),
            company_data=company_data,
            error=data.get("error"),
            error_code=data.get("error_code"),
        )


def _first(*values: Any) -> Any:
    """Return the first value that is not None or empty."""
    for value in values:
        if value not in (None, ""):
            return value
    return None


def transform_company_data(payload: dict[str, Any]) -> KvKCompanyData:
    """Map an OpenKvK payload onto KvKCompanyData.

    The registry has returned English, snake_case and Dutch field names over
    time; each field accepts all of them.
    """
    address = payload.get("address") or {}
    adres = payload.get("adres") or {}
    return KvKCompanyData(
        kvk_number=str(_first(payload.get("kvkNumber"), payload.get("kvk_number"), payload.get("dossiernummer")) or ""),
        name=_first(payload.get("name"), payload.get("company_name"), payload.get("handelsnaam")) or "",
        trade_name=_first(payload.get("tradeName"), payload.get("trade_name"), payload.get("handelsnaam")),
        legal_form=_first(payload.get("legalForm"), payload.get("legal_form"), payload.get("rechtsvorm")),
        business_status=_first(payload.get("businessStatus"), payload.get("business_status"), payload.get("status")),
        address=KvKAddress(
            street=_first(address.get("street"), adres.get("straat"), payload.get("straatnaam")),
            house_number=_first(address.get("houseNumber"), adres.get("huisnummer"), payload.get("huisnummer")),
            postal_code=_first(address.get("postalCode"), adres.get("postcode"), payload.get("postcode")),
            city=_first(address.get("city"), adres.get("plaats"), payload.get("plaats")),
            country=_first(address.get("country"), adres.get("land")) or "Nederland",
        ),
        website=_first(payload.get("website"), payload.get("website_url")),
        sbi_codes=_first(payload.get("sbiCodes"), payload.get("sbi_codes")) or [],
        establishment_date=_first(payload.get("establishmentDate"), payload.get("establishment_date"), payload.get("oprichtingsdatum")),
        employee_count=_first(payload.get("employeeCount"), payload.get("employee_count"), payload.get("werknemers")),
    )


class KvKClient:
    """Validates KvK numbers against OpenKvK with caching and rate limiting.

    Args:
        pool: Redis pool for the cache, rate-limit window and breaker state.
        http_client: Optional shared httpx client; one is created per request
            when omitted.
    """

    def __init__(
        self,
        pool: "redis.Redis",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._redis = pool
        self._http = http_client
        self.base_url = settings.kvk_api_url.rstrip("/")
        self.cache = RegistryCache(pool, "kvk", settings.kvk_cache_ttl_seconds)
        self.breaker = RegistryCircuitBreaker(
            "kvk",
            pool,
            fail_max=settings.registry_breaker_fail_max,
            reset_timeout=settings.registry_breaker_reset_timeout,
            exclude=lambda exc: isinstance(exc, KvKApiError) and not exc.is_outage,
        )

    @staticmethod
    def _fallback(error: str, code: str | None = None) -> KvKValidationResult:
        return KvKValidationResult(
            is_valid=False,
            source=SOURCE_FALLBACK,
            validated_at=utcnow(),
            error=error,
            error_code=code,
        )

    async def validate(self, kvk_number: str) -> KvKValidationResult:
        """Validate one KvK number.

        Args:
            kvk_number: Number as entered; spaces and dashes are ignored and
                short numbers are left-padded with zeros.

        Returns:
            KvKValidationResult with company data when the number is registered.
        """
        if not kvk_number or not isinstance(kvk_number, str):
            return self._fallback("Ongeldig KvK nummer formaat", "INVALID_KVK_FORMAT")

        cleaned = clean_kvk_number(kvk_number)
        if not KVK_PATTERN.match(cleaned):
            return self._fallback("KvK nummer moet 8 cijfers bevatten", "INVALID_KVK_FORMAT")

        cached = await self.cache.get(cleaned)
        if cached is not None:
            result = KvKValidationResult.from_dict(cached)
            result.source = SOURCE_CACHE
            logger.debug("kvk_cache_hit", kvk_number=cleaned)
            return result

        try:
            payload = await self.breaker.call(self._fetch, cleaned)
        except pybreaker.CircuitBreakerError:
            logger.warning("kvk_registry_unavailable", kvk_number=cleaned)
            return self._fallback(
                "KvK register tijdelijk niet beschikbaar. Probeer het later opnieuw.",
                "SERVICE_UNAVAILABLE",
            )
        except KvKApiError as exc:
            logger.warning(
                "kvk_lookup_failed", kvk_number=cleaned, code=exc.code, status=exc.status
            )
            result = self._fallback(exc.message, exc.code)
            if exc.code != "RATE_LIMIT_EXCEEDED":
                await self.cache.set(cleaned, result.to_dict())
            return result

        company = transform_company_data(payload)
        if not company.name:
            result = self._fallback("Incomplete bedrijfsinformatie ontvangen", "INCOMPLETE_DATA")
        else:
            if not company.kvk_number:
                company.kvk_number = cleaned
            result = KvKValidationResult(
                is_valid=True,
                source=SOURCE_API,
                validated_at=utcnow(),
                company_data=company,
            )
            logger.info("kvk_lookup_succeeded", kvk_number=cleaned)

        await self.cache.set(cleaned, result.to_dict())
        return result

    async def _fetch(self, kvk_number: str) -> dict[str, Any]:
        if await hit_rate_limit(self._redis, "kvk", settings.kvk_rate_limit_per_minute):
            raise KvKApiError(
                "RATE_LIMIT_EXCEEDED",
                "API rate limit exceeded. Please try again later.",
                429,
            )

        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if settings.kvk_api_key:
            headers["ovio-api-key"] = settings.kvk_api_key
        url = f"{self.base_url}/{kvk_number}"

        try:
            if self._http is not None:
                response = await self._http.get(
                    url, headers=headers, timeout=settings.kvk_timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=settings.kvk_timeout_seconds) as client:
                    response = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise KvKApiError("TIMEOUT", "API request timeout. Please try again.", 408) from exc
        except httpx.HTTPError as exc:
            raise KvKApiError(
                "NETWORK_ERROR",
                "Network error occurred while validating KvK number",
                500,
            ) from exc

        if response.status_code == 404:
            raise KvKApiError("COMPANY_NOT_FOUND", "Bedrijf niet gevonden in KvK register", 404)
        if response.status_code == 429:
            raise KvKApiError(
                "RATE_LIMIT_EXCEEDED", "Te veel verzoeken. Probeer het later opnieuw.", 429
            )
        if response.status_code >= 400:
            raise KvKApiError(
                "API_ERROR",
                f"API error: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise KvKApiError("API_ERROR", "Ongeldig antwoord van KvK register", 502) from exc

    async def validate_many(self, kvk_numbers: list[str]) -> dict[str, KvKValidationResult]:
        """Validate several numbers in concurrent batches, keyed by input value."""
        results: dict[str, KvKValidationResult] = {}
        batch_size = max(settings.kvk_batch_size, 1)
        batches = [
            kvk_numbers[i : i + batch_size] for i in range(0, len(kvk_numbers), batch_size)
        ]
        for index, batch in enumerate(batches):
            batch_results = await asyncio.gather(*(self.validate(number) for number in batch))
            results.update(zip(batch, batch_results))
            if index < len(batches) - 1 and settings.kvk_batch_delay_seconds > 0:
                await asyncio.sleep(settings.kvk_batch_delay_seconds)
        return results

    async def cache_stats(self) -> dict[str, Any]:
        return {
            "size": await self.cache.size(),
            "ttl_seconds": self.cache.ttl_seconds,
            "rate_limit_per_minute": settings.kvk_rate_limit_per_minute,
            "circuit": await self.breaker.state(),
        }
