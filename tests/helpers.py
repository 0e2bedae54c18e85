"""Test doubles and request helpers shared by the test modules."""

import fnmatch
from typing import Any

import httpx
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models import Client

PASSWORD = "Veilig2025"
USER_EMAIL = "jan@bakkerij-jansen.nl"
OTHER_EMAIL = "petra@studio-visser.nl"
ADMIN_EMAIL = "admin@zzptrust.nl"

VALID_IBAN = "NL91ABNA0417164300"
VALID_VAT = "NL123456789B01"
VALID_KVK = "12345678"


class FakePipeline:
    """Buffers commands and applies them in order on ``execute()``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._commands.clear()

    def incr(self, key: str) -> "FakePipeline":
        self._commands.append(("incr", (key,)))
        return self

    def expire(self, key: str, seconds: int) -> "FakePipeline":
        self._commands.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        self._redis.executed_pipelines += 1
        results = [await getattr(self._redis, name)(*args) for name, args in self._commands]
        self._commands.clear()
        return results


class FakeRedis:
    """In-process stand-in for the ``redis.asyncio`` calls the app makes.

    Values are kept as ``str`` the way a ``decode_responses=True`` pool
    returns them.
    """

    def __init__(self, should_fail: bool = False) -> None:
        self.should_fail = should_fail
        self.values: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.expiry: dict[str, int] = {}
        self.executed_pipelines = 0

    async def ping(self) -> bool:
        if self.should_fail:
            raise RuntimeError("redis unavailable")
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(
        self, key: str, value: Any, ex: int | None = None, nx: bool = False
    ) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = str(value)
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.hashes.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*"):
        for key in list(self.values) + list(self.hashes):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def incr(self, key: str) -> int:
        value = int(self.values.get(key, 0)) + 1
        self.values[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiry[key] = seconds
        return True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hset(
        self,
        key: str,
        field: str | None = None,
        value: Any = None,
        mapping: dict[str, Any] | None = None,
    ) -> int:
        stored = self.hashes.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        for name, item in items.items():
            stored[name] = str(item)
        return len(items)

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        stored = self.hashes.setdefault(key, {})
        value = int(stored.get(field, 0)) + amount
        stored[field] = str(value)
        return value

    async def aclose(self) -> None:
        return None


def soap_response(
    vat_number: str,
    valid: bool = True,
    name: str | None = "Bakkerij Jansen B.V.",
) -> str:
    """A ``ValidateVatResponse`` envelope as the BTW service returns it."""
    name_xml = f"<Name>{name}</Name>" if name else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body>"
        '<ValidateVatResponse xmlns="http://www.btw-nummer-controle.nl/">'
        "<ValidateVatResult>"
        f"<Valid>{'true' if valid else 'false'}</Valid>"
        f"{name_xml}"
        f"<VatNumber>{vat_number}</VatNumber>"
        "<Address><Line1>Dorpsstraat 1</Line1><PostalCode>1234 AB</PostalCode>"
        "<City>Utrecht</City><Country>NL</Country></Address>"
        "</ValidateVatResult>"
        "</ValidateVatResponse>"
        "</soap:Body>"
        "</soap:Envelope>"
    )


class RegistryStub:
    """Answers KvK GETs and BTW SOAP POSTs for an httpx ``MockTransport``.

    Unknown KvK numbers return 404; unknown VAT numbers are reported valid.
    """

    def __init__(self) -> None:
        self.companies: dict[str, tuple[int, dict[str, Any]]] = {
            VALID_KVK: (
                200,
                {
                    "kvkNumber": VALID_KVK,
                    "name": "Bakkerij Jansen B.V.",
                    "legalForm": "Besloten Vennootschap",
                    "address": {
                        "street": "Dorpsstraat",
                        "houseNumber": "1",
                        "postalCode": "1234 AB",
                        "city": "Utrecht",
                    },
                },
            )
        }
        self.btw_status = 200
        self.btw_valid: dict[str, bool] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            number = request.url.path.rsplit("/", 1)[-1]
            status, payload = self.companies.get(number, (404, {"error": "not found"}))
            return httpx.Response(status, json=payload)

        if self.btw_status >= 400:
            return httpx.Response(self.btw_status, text="Service Unavailable")
        body = request.content.decode("utf-8")
        number = body.split("<VatNumber>", 1)[1].split("</VatNumber>", 1)[0]
        return httpx.Response(
            200,
            text=soap_response(number, self.btw_valid.get(number, True)),
            headers={"Content-Type": "text/xml; charset=utf-8"},
        )

    def calls(self, method: str) -> int:
        return sum(1 for request in self.requests if request.method == method)


async def register(
    client: AsyncClient,
    email: str,
    password: str = PASSWORD,
    name: str | None = None,
) -> dict[str, Any]:
    response = await client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": name},
    )
    assert response.status_code == 201, response.text
    return response.json()


def client_payload(**overrides: Any) -> dict[str, Any]:
    """A complete, valid onboarding wizard submission."""
    payload: dict[str, Any] = {
        "name": "Anna de Vries",
        "email": "anna@devries-advies.nl",
        "phone": "06 1234 5678",
        "company": "De Vries Advies B.V.",
        "kvk_number": VALID_KVK,
        "vat_number": "nl 1234.56789 b01",
        "address": "Dorpsstraat 1",
        "postal_code": "1234ab",
        "city": "Utrecht",
        "iban": "nl91 abna 0417 1643 00",
        "bank_name": "ABN AMRO",
        "account_holder": "De Vries Advies B.V.",
        "accepted_terms": True,
        "accepted_privacy": True,
    }
    payload.update(overrides)
    return payload


async def create_client(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    response = await client.post("/api/clients", json=client_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


async def confirmation_token(
    factory: async_sessionmaker[AsyncSession], client_id: int
) -> str:
    async with factory() as session:
        result = await session.execute(
            select(Client.email_confirmation_token).where(Client.id == client_id)
        )
        return result.scalar_one()


async def onboard_client(
    user: AsyncClient,
    factory: async_sessionmaker[AsyncSession],
    **overrides: Any,
) -> dict[str, Any]:
    """Create a client and take it through to ADMIN_REVIEW."""
    created = await create_client(user, **overrides)
    response = await user.post(
        "/api/clients/workflow",
        json={"client_id": created["id"], "step": "VERIFICATION"},
    )
    assert response.status_code == 200, response.text

    token = await confirmation_token(factory, created["id"])
    response = await user.post("/api/confirm-email", json={"token": token})
    assert response.status_code == 200, response.text

    response = await user.post(
        "/api/clients/workflow",
        json={"client_id": created["id"], "step": "COMPLETED"},
    )
    assert response.status_code == 200, response.text
    return created


async def approve(admin: AsyncClient, client_id: int) -> dict[str, Any]:
    response = await admin.post(
        "/api/admin/approvals",
        json={"client_id": client_id, "action": "approve", "notes": "Akkoord"},
    )
    assert response.status_code == 200, response.text
    return response.json()
