"""KvK/BTW registry lookups and single-field format checks."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from src.api.deps import get_btw_client, get_kvk_client, require_permissions
from src.integrations.btw import BTWClient
from src.integrations.kvk import KvKClient
from src.models.user import User
from src.services.permissions import PERMISSIONS as P
from src.validation.formats import FIELD_VALIDATORS

router = APIRouter(prefix="/api", tags=["validation"])

MAX_KVK_BATCH = 10
MAX_KVK_LENGTH = 20
MAX_BTW_BATCH = 5
MAX_BTW_LENGTH = 30
# Fields whose rules differ per country.
COUNTRY_FIELDS = {"phone", "postal_code"}


class KvKBatchRequest(BaseModel):
    kvk_numbers: list[str] = Field(default_factory=list)


class BTWBatchRequest(BaseModel):
    btw_numbers: list[str] = Field(default_factory=list)


class FieldValidationRequest(BaseModel):
    """Values to check, keyed by field name (``kvk_number``, ``iban``, ...)."""

    fields: dict[str, str] = Field(default_factory=dict)
    country: str = Field(default="NL", min_length=2, max_length=2)


def _bad_request(message: str, code: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": message, "code": code})


@router.get("/validate-kvk")
async def validate_kvk(
    kvk: str = Query(default=""),
    _: User = Depends(require_permissions(P.CLIENT_READ)),
    client: KvKClient = Depends(get_kvk_client),
) -> dict[str, Any]:
    """Look one KvK number up in the registry."""
    kvk = kvk.strip()
    if not kvk:
        raise _bad_request("KvK nummer is vereist", "MISSING_KVK_NUMBER")
    if len(kvk) > MAX_KVK_LENGTH:
        raise _bad_request("Ongeldig KvK nummer format", "INVALID_KVK_FORMAT")
    result = await client.validate(kvk)
    return {"success": True, "data": result.to_dict()}


@router.post("/validate-kvk")
async def validate_kvk_batch(
    payload: KvKBatchRequest,
    _: User = Depends(require_permissions(P.CLIENT_READ)),
    client: KvKClient = Depends(get_kvk_client),
) -> dict[str, Any]:
    numbers = [number.strip() for number in payload.kvk_numbers]
    if not numbers:
        raise _bad_request("Minimaal één KvK nummer is vereist", "EMPTY_KVK_LIST")
    if len(numbers) > MAX_KVK_BATCH:
        raise _bad_request(
            f"Maximaal {MAX_KVK_BATCH} KvK nummers per verzoek", "TOO_MANY_KVK_NUMBERS"
        )
    if any(not number or len(number) > MAX_KVK_LENGTH for number in numbers):
        raise _bad_request("Ongeldige KvK nummers gedetecteerd", "INVALID_KVK_FORMAT")

    results = await client.validate_many(numbers)
    return {
        "success": True,
        "data": {number: result.to_dict() for number, result in results.items()},
        "stats": await client.cache_stats(),
    }


@router.get("/validate-btw")
async def validate_btw(
    response: Response,
    btw: str = Query(default=""),
    _: User = Depends(require_permissions(P.CLIENT_READ)),
    client: BTWClient = Depends(get_btw_client),
) -> dict[str, Any]:
    """Check one VAT number against the BTW register."""
    btw = btw.strip()
    if not btw:
        raise _bad_request("BTW nummer is vereist", "MISSING_BTW_NUMBER")
    if len(btw) > MAX_BTW_LENGTH:
        raise _bad_request("BTW nummer te lang", "INVALID_BTW_FORMAT")
    result = await client.validate(btw)
    response.headers["Cache-Control"] = "public, max-age=1800"
    return {"success": True, "data": result.to_dict()}


@router.post("/validate-btw")
async def validate_btw_batch(
    payload: BTWBatchRequest,
    response: Response,
    _: User = Depends(require_permissions(P.CLIENT_READ)),
    client: BTWClient = Depends(get_btw_client),
) -> dict[str, Any]:
    numbers = [number.strip() for number in payload.btw_numbers]
    if not numbers:
        raise _bad_request("Minimaal één BTW nummer is vereist", "EMPTY_BTW_LIST")
    if len(numbers) > MAX_BTW_BATCH:
        raise _bad_request(
            f"Maximaal {MAX_BTW_BATCH} BTW nummers per verzoek", "TOO_MANY_BTW_NUMBERS"
        )
    if any(not number or len(number) > MAX_BTW_LENGTH for number in numbers):
        raise _bad_request("Ongeldige BTW nummers gedetecteerd", "INVALID_BTW_FORMAT")

    results = await client.validate_many(numbers)
    response.headers["Cache-Control"] = "public, max-age=1800"
    return {
        "success": True,
        "data": {number: result.to_dict() for number, result in results.items()},
        "stats": await client.stats(),
    }


@router.post("/validate/fields")
async def validate_fields(
    payload: FieldValidationRequest,
    _: User = Depends(require_permissions(P.CLIENT_READ)),
) -> dict[str, Any]:
    """Run the format checks used by the onboarding form.

    Unknown field names are rejected so typos do not silently pass.
    """
    unknown = sorted(set(payload.fields) - set(FIELD_VALIDATORS))
    if unknown:
        raise _bad_request(f"Onbekende velden: {', '.join(unknown)}", "UNKNOWN_FIELDS")

    country = payload.country.upper()
    results = {}
    for name, value in payload.fields.items():
        validator = FIELD_VALIDATORS[name]
        if name in COUNTRY_FIELDS:
            result = validator(value, country)
        else:
            result = validator(value)
        results[name] = result.to_dict()
    return {
        "is_valid": all(result["is_valid"] for result in results.values()),
        "results": results,
    }
