"""Client for the BTW (VAT) number check SOAP service.

The service at btw-nummer-controle.nl answers a SOAP 1.1 ``ValidateVat``
call. When it cannot be reached the client degrades to a format-only
answer (``source="FALLBACK"``, ``status="UNKNOWN"``) with a warning rather
than failing the request.
"""

from __future__ import annotations

import asyncio
import time
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape

import httpx
import pybreaker

from src.core.config import settings
from src.core.logging import get_logger
from src.integrations.breaker import RegistryCircuitBreaker
from src.integrations.cache import RegistryCache
from src.models.base import utcnow
from src.validation.formats import VAT_PATTERNS, clean_vat_number

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = get_logger(__name__)

SOAP_ACTION = "http://www.btw-nummer-controle.nl/ValidateVat"
SERVICE_NAMESPACE = "http://www.btw-nummer-controle.nl/"

STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"
STATUS_UNKNOWN = "UNKNOWN"

SOURCE_API = "API"
SOURCE_CACHE = "CACHE"
SOURCE_FALLBACK = "FALLBACK"

STATS_KEY = "registry_stats:btw"
STAT_FIELDS = ("total_requests", "cache_hits", "cache_misses", "api_calls", "errors")


class BTWServiceError(Exception):
    """The SOAP service returned an error status or an unreadable body."""


@dataclass
class BTWAddress:
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None


@dataclass
class BTWValidationResult:
    """Outcome of one VAT number check."""

    btw_number: str
    is_valid: bool
    status: str
    source: str
    validated_at: datetime
    company_name: str | None = None
    address: BTWAddress | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["validated_at"] = self.validated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BTWValidationResult:
        address = data.get("address")
        return cls(
            btw_number=data["btw_number"],
            is_valid=data["is_valid"],
            status=data["status"],
            source=data["source"],
            validated_at=datetime.fromisoformat(data["validated_at"]),
            company_name=data.get("company_name"),
            address=BTWAddress(**address) if address else None,
            error=data.get("error"),
            warnings=list(data.get("warnings") or []),
        )


def is_valid_btw_format(cleaned: str) -> bool:
    pattern = VAT_PATTERNS.get(cleaned[:2])
    return bool(pattern and pattern.match(cleaned))


def build_soap_envelope(btw_number: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
        'xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body>"
        f'<ValidateVat xmlns="{SERVICE_NAMESPACE}">'
        f"<VatNumber>{escape(btw_number)}</VatNumber>"
        "</ValidateVat>"
        "</soap:Body>"
        "</soap:Envelope>"
    )


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _text(element: ET.Element | None, name: str) -> str | None:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def parse_soap_response(body: str, requested_number: str) -> BTWValidationResult:
    """Read a ``ValidateVatResponse`` envelope.

    Raises:
        BTWServiceError: If the XML is malformed or lacks ``ValidateVatResult``.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise BTWServiceError(f"Failed to parse SOAP response: {exc}") from exc

    result_element = None
    for element in root.iter():
        if _local_name(element.tag) == "ValidateVatResult":
            result_element = element
            break
    if result_element is None:
        raise BTWServiceError("Invalid SOAP response structure")

    is_valid = (_text(result_element, "Valid") or "").lower() == "true"
    address_element = _child(result_element, "Address")
    address = None
    if address_element is not None:
        address = BTWAddress(
            street=_text(address_element, "Line1"),
            postal_code=_text(address_element, "PostalCode"),
            city=_text(address_element, "City"),
            country=_text(address_element, "Country"),
        )

    return BTWValidationResult(
        btw_number=_text(result_element, "VatNumber") or requested_number,
        is_valid=is_valid,
        status=STATUS_ACTIVE if is_valid else STATUS_INACTIVE,
        source=SOURCE_API,
        validated_at=utcnow(),
        company_name=_text(result_element, "Name"),
        address=address,
    )


class BTWClient:
    """Validates VAT numbers with caching, throttling and a format fallback.

    Outbound calls from one process are spaced at least
    ``btw_min_request_interval_seconds`` apart.
    """

    _last_request_at = 0.0

    def __init__(
        self,
        pool: "redis.Redis",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._redis = pool
        self._http = http_client
        self.api_url = settings.btw_api_url
        self.cache = RegistryCache(pool, "btw", settings.btw_cache_ttl_seconds)
        self.breaker = RegistryCircuitBreaker(
            "btw",
            pool,
            fail_max=settings.registry_breaker_fail_max,
            reset_timeout=settings.registry_breaker_reset_timeout,
        )

    async def _count(self, name: str) -> None:
        await self._redis.hincrby(STATS_KEY, name, 1)

    @staticmethod
    def _fallback(cleaned: str, error: str | None = None) -> BTWValidationResult:
        valid_format = is_valid_btw_format(cleaned)
        return BTWValidationResult(
            btw_number=cleaned,
            is_valid=valid_format,
            status=STATUS_UNKNOWN if valid_format else STATUS_INACTIVE,
            source=SOURCE_FALLBACK,
            validated_at=utcnow(),
            error=error,
            warnings=[
                "BTW register niet bereikbaar: alleen het formaat is gecontroleerd"
            ],
        )

    async def validate(self, btw_number: str) -> BTWValidationResult:
        """Validate one VAT number.

        Raises:
            ValueError: If ``btw_number`` is empty.
        """
        if not (btw_number or "").strip():
            raise ValueError("BTW nummer is vereist")

        await self._count("total_requests")
        await self._redis.hset(STATS_KEY, "last_request", utcnow().isoformat())

        cleaned = clean_vat_number(btw_number)
        if not is_valid_btw_format(cleaned):
            return BTWValidationResult(
                btw_number=cleaned,
                is_valid=False,
                status=STATUS_INACTIVE,
                source=SOURCE_FALLBACK,
                validated_at=utcnow(),
                error="Ongeldige BTW nummer format",
            )

        cached = await self.cache.get(cleaned)
        if cached is not None:
            await self._count("cache_hits")
            result = BTWValidationResult.from_dict(cached)
            result.source = SOURCE_CACHE
            return result
        await self._count("cache_misses")

        try:
            result = await self.breaker.call(self._call_service, cleaned)
        except pybreaker.CircuitBreakerError:
            await self._count("errors")
            logger.warning("btw_registry_unavailable", btw_number=cleaned)
            return self._fallback(cleaned, "BTW register tijdelijk niet beschikbaar")
        except (BTWServiceError, httpx.HTTPError) as exc:
            await self._count("errors")
            logger.warning("btw_lookup_failed", btw_number=cleaned, error=str(exc))
            return self._fallback(cleaned, str(exc) or "BTW validatie mislukt")

        await self.cache.set(cleaned, result.to_dict())
        logger.info("btw_lookup_succeeded", btw_number=cleaned, is_valid=result.is_valid)
        return result

    async def _throttle(self) -> None:
        interval = settings.btw_min_request_interval_seconds
        cls = type(self)
        now = time.monotonic()
        wait = cls._last_request_at + interval - now
        # Reserve the slot before sleeping so concurrent callers queue up.
        cls._last_request_at = now + max(wait, 0)
        if wait > 0:
            await asyncio.sleep(wait)

    async def _call_service(self, cleaned: str) -> BTWValidationResult:
        await self._throttle()
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": SOAP_ACTION,
        }
        envelope = build_soap_envelope(cleaned)

        if self._http is not None:
            response = await self._http.post(
                self.api_url,
                content=envelope,
                headers=headers,
                timeout=settings.btw_timeout_seconds,
            )
        else:
            async with httpx.AsyncClient(timeout=settings.btw_timeout_seconds) as client:
                response = await client.post(self.api_url, content=envelope, headers=headers)
        await self._count("api_calls")

        if response.status_code >= 400:
            raise BTWServiceError(f"BTW service error: {response.status_code}")
        return parse_soap_response(response.text, cleaned)

    async def validate_many(self, btw_numbers: list[str]) -> dict[str, BTWValidationResult]:
        """Validate numbers one after another, keyed by cleaned number."""
        results: dict[str, BTWValidationResult] = {}
        for btw_number in btw_numbers:
            cleaned = clean_vat_number(btw_number)
            try:
                results[cleaned] = await self.validate(btw_number)
            except ValueError as exc:
                results[cleaned] = BTWValidationResult(
                    btw_number=cleaned,
                    is_valid=False,
                    status=STATUS_INACTIVE,
                    source=SOURCE_FALLBACK,
                    validated_at=utcnow(),
                    error=str(exc),
                )
        return results

    async def stats(self) -> dict[str, Any]:
        stored = await self._redis.hgetall(STATS_KEY)
        stats: dict[str, Any] = {name: int(stored.get(name, 0)) for name in STAT_FIELDS}
        stats["last_request"] = stored.get("last_request")
        stats["cache_size"] = await self.cache.size()
        stats["circuit"] = await self.breaker.state()
        return stats
