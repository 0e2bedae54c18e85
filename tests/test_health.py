"""Unit tests for health endpoint behavior."""

from collections.abc import AsyncGenerator

import pybreaker
import pytest
from httpx import ASGITransport, AsyncClient

from src.api.deps import get_db
from src.main import app
from tests.helpers import FakeRedis


class FakeSession:
    """Fake async database session for health checks."""

    def __init__(self, should_fail: bool) -> None:
        self.should_fail = should_fail

    async def execute(self, _statement: object) -> None:
        """Simulate database execute behavior."""
        if self.should_fail:
            raise RuntimeError("database unavailable")


async def _make_request(
    db_fail: bool = False, redis: FakeRedis | None = None
) -> AsyncClient:
    async def override_get_db() -> AsyncGenerator[FakeSession, None]:
        yield FakeSession(should_fail=db_fail)

    app.dependency_overrides[get_db] = override_get_db
    app.state.redis = redis or FakeRedis()

    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    )


@pytest.mark.asyncio
async def test_health_endpoint_returns_ok() -> None:
    """Return ok when db and redis are connected."""
    client = await _make_request()
    try:
        response = await client.get("/api/health")
    finally:
        await client.aclose()
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["db"] == "connected"
    assert data["redis"] == "connected"
    assert data["registries"] == {"kvk": "closed", "btw": "closed"}


@pytest.mark.asyncio
async def test_health_endpoint_degraded_on_db_failure() -> None:
    """Return degraded when database is disconnected."""
    client = await _make_request(db_fail=True)
    try:
        response = await client.get("/api/health")
    finally:
        await client.aclose()
        app.dependency_overrides.clear()

    data = response.json()
    assert response.status_code == 200
    assert data["status"] == "degraded"
    assert data["db"] == "disconnected"
    assert data["redis"] == "connected"


@pytest.mark.asyncio
async def test_health_endpoint_degraded_on_redis_failure() -> None:
    """Return degraded and skip circuit states when Redis is down."""
    client = await _make_request(redis=FakeRedis(should_fail=True))
    try:
        response = await client.get("/api/health")
    finally:
        await client.aclose()
        app.dependency_overrides.clear()

    data = response.json()
    assert data["status"] == "degraded"
    assert data["db"] == "connected"
    assert data["redis"] == "disconnected"
    assert data["registries"] == {}


@pytest.mark.asyncio
async def test_open_registry_circuit_is_reported_without_degrading() -> None:
    redis = FakeRedis()
    await redis.hset("circuit_breaker:kvk", mapping={"state": pybreaker.STATE_OPEN})
    client = await _make_request(redis=redis)
    try:
        response = await client.get("/api/health")
    finally:
        await client.aclose()
        app.dependency_overrides.clear()

    data = response.json()
    assert data["status"] == "ok"
    assert data["registries"]["kvk"] == pybreaker.STATE_OPEN


@pytest.mark.asyncio
async def test_request_id_header_is_echoed() -> None:
    client = await _make_request()
    try:
        response = await client.get("/api/health", headers={"X-Request-ID": "req-42"})
        generated = await client.get("/api/health")
    finally:
        await client.aclose()
        app.dependency_overrides.clear()

    assert response.headers["X-Request-ID"] == "req-42"
    assert generated.headers["X-Request-ID"]
