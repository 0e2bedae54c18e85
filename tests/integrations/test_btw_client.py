"""Tests for the BTW number SOAP client."""

import httpx
import pytest

from src.integrations.btw import (
    BTWClient,
    BTWServiceError,
    build_soap_envelope,
    parse_soap_response,
)
from tests.helpers import VALID_VAT, FakeRedis, RegistryStub, soap_response


@pytest.fixture
def btw(fake_redis: FakeRedis, http_client: httpx.AsyncClient) -> BTWClient:
    return BTWClient(fake_redis, http_client)


def test_envelope_escapes_number() -> None:
    envelope = build_soap_envelope("NL<1>")
    assert "<VatNumber>NL&lt;1&gt;</VatNumber>" in envelope
    assert "<ValidateVat xmlns=\"http://www.btw-nummer-controle.nl/\">" in envelope


def test_parse_response() -> None:
    result = parse_soap_response(soap_response(VALID_VAT), VALID_VAT)

    assert result.is_valid
    assert result.status == "ACTIVE"
    assert result.source == "API"
    assert result.company_name == "Bakkerij Jansen B.V."
    assert result.address.street == "Dorpsstraat 1"
    assert result.address.postal_code == "1234 AB"


def test_parse_inactive_number() -> None:
    result = parse_soap_response(soap_response(VALID_VAT, valid=False, name=None), VALID_VAT)
    assert not result.is_valid
    assert result.status == "INACTIVE"
    assert result.company_name is None


@pytest.mark.parametrize("body", ["<not-xml", "<Envelope><Body/></Envelope>"])
def test_parse_rejects_unexpected_bodies(body: str) -> None:
    with pytest.raises(BTWServiceError):
        parse_soap_response(body, VALID_VAT)


@pytest.mark.asyncio
async def test_validate_calls_service(btw: BTWClient, registry: RegistryStub) -> None:
    result = await btw.validate("nl 1234.56789 b01")

    assert result.is_valid
    assert result.source == "API"
    assert result.btw_number == VALID_VAT
    request = registry.requests[0]
    assert request.method == "POST"
    assert request.headers["SOAPAction"] == "http://www.btw-nummer-controle.nl/ValidateVat"


@pytest.mark.asyncio
async def test_second_lookup_is_cached(btw: BTWClient, registry: RegistryStub) -> None:
    await btw.validate(VALID_VAT)
    cached = await btw.validate(VALID_VAT)

    assert cached.source == "CACHE"
    assert cached.company_name == "Bakkerij Jansen B.V."
    assert registry.calls("POST") == 1


@pytest.mark.asyncio
async def test_invalid_format(btw: BTWClient, registry: RegistryStub) -> None:
    result = await btw.validate("NL12345")

    assert not result.is_valid
    assert result.status == "INACTIVE"
    assert result.source == "FALLBACK"
    assert result.error == "Ongeldige BTW nummer format"
    assert registry.requests == []


@pytest.mark.asyncio
async def test_empty_number_raises(btw: BTWClient) -> None:
    with pytest.raises(ValueError, match="BTW nummer is vereist"):
        await btw.validate("  ")


@pytest.mark.asyncio
async def test_service_error_falls_back_to_format_check(
    btw: BTWClient, registry: RegistryStub
) -> None:
    registry.btw_status = 503

    result = await btw.validate(VALID_VAT)

    assert result.is_valid
    assert result.status == "UNKNOWN"
    assert result.source == "FALLBACK"
    assert result.error == "BTW service error: 503"
    assert result.warnings == [
        "BTW register niet bereikbaar: alleen het formaat is gecontroleerd"
    ]
    assert await btw.cache.get(VALID_VAT) is None
    assert await btw.breaker.failure_count() == 1


@pytest.mark.asyncio
async def test_validate_many_handles_empty_input(btw: BTWClient) -> None:
    results = await btw.validate_many([VALID_VAT, ""])

    assert results[VALID_VAT].is_valid
    assert results[""].error == "BTW nummer is vereist"


@pytest.mark.asyncio
async def test_stats(btw: BTWClient, registry: RegistryStub) -> None:
    await btw.validate(VALID_VAT)
    await btw.validate(VALID_VAT)
    registry.btw_status = 500
    await btw.validate("NL999999999B01")

    stats = await btw.stats()

    assert stats["total_requests"] == 3
    assert stats["cache_hits"] == 1
    assert stats["cache_misses"] == 2
    assert stats["api_calls"] == 2
    assert stats["errors"] == 1
    assert stats["cache_size"] == 1
    assert stats["circuit"] == "closed"
    assert stats["last_request"]
