"""Tests for the Redis-backed registry circuit breaker."""

import asyncio
import time

import pybreaker
import pytest

from src.integrations.breaker import RegistryCircuitBreaker
from tests.helpers import FakeRedis


class RegistryDown(Exception):
    pass


class NotFound(Exception):
    pass


async def _fail() -> None:
    raise RegistryDown("registry down")


async def _not_found() -> None:
    raise NotFound("no such company")


async def _ok() -> str:
    return "ok"


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def breaker(redis: FakeRedis) -> RegistryCircuitBreaker:
    return RegistryCircuitBreaker(
        "kvk",
        redis,
        fail_max=3,
        reset_timeout=30,
        exclude=lambda exc: isinstance(exc, NotFound),
    )


@pytest.mark.asyncio
async def test_starts_closed(breaker: RegistryCircuitBreaker) -> None:
    assert await breaker.state() == pybreaker.STATE_CLOSED
    assert await breaker.call(_ok) == "ok"


@pytest.mark.asyncio
async def test_opens_after_fail_max(
    breaker: RegistryCircuitBreaker, redis: FakeRedis
) -> None:
    for _ in range(3):
        with pytest.raises(RegistryDown):
            await breaker.call(_fail)

    assert await breaker.state() == pybreaker.STATE_OPEN
    assert redis.hashes["circuit_breaker:kvk"]["failures"] == "3"

    with pytest.raises(pybreaker.CircuitBreakerError):
        await breaker.call(_ok)


@pytest.mark.asyncio
async def test_success_resets_failure_count(breaker: RegistryCircuitBreaker) -> None:
    for _ in range(2):
        with pytest.raises(RegistryDown):
            await breaker.call(_fail)
    assert await breaker.failure_count() == 2

    await breaker.call(_ok)

    assert await breaker.failure_count() == 0
    assert await breaker.state() == pybreaker.STATE_CLOSED


@pytest.mark.asyncio
async def test_excluded_errors_do_not_count(breaker: RegistryCircuitBreaker) -> None:
    for _ in range(5):
        with pytest.raises(NotFound):
            await breaker.call(_not_found)

    assert await breaker.state() == pybreaker.STATE_CLOSED
    assert await breaker.failure_count() == 0


@pytest.mark.asyncio
async def test_half_open_trial_closes_on_success(
    breaker: RegistryCircuitBreaker, redis: FakeRedis
) -> None:
    await redis.hset(
        "circuit_breaker:kvk",
        mapping={"state": pybreaker.STATE_OPEN, "failures": 3, "opened_at": time.time() - 60},
    )

    assert await breaker.call(_ok) == "ok"
    assert await breaker.state() == pybreaker.STATE_CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_reopens_on_failure(
    breaker: RegistryCircuitBreaker, redis: FakeRedis
) -> None:
    await redis.hset(
        "circuit_breaker:kvk",
        mapping={"state": pybreaker.STATE_OPEN, "failures": 3, "opened_at": time.time() - 60},
    )

    with pytest.raises(RegistryDown):
        await breaker.call(_fail)

    assert await breaker.state() == pybreaker.STATE_OPEN
    assert float(redis.hashes["circuit_breaker:kvk"]["opened_at"]) > time.time() - 5


@pytest.mark.asyncio
async def test_state_is_shared_between_instances(
    breaker: RegistryCircuitBreaker, redis: FakeRedis
) -> None:
    for _ in range(3):
        with pytest.raises(RegistryDown):
            await breaker.call(_fail)

    other_worker = RegistryCircuitBreaker("kvk", redis, fail_max=3)
    with pytest.raises(pybreaker.CircuitBreakerError):
        await other_worker.call(_ok)

    await other_worker.reset()
    assert await breaker.state() == pybreaker.STATE_CLOSED


@pytest.mark.asyncio
async def test_half_open_admits_one_trial_call(
    breaker: RegistryCircuitBreaker, redis: FakeRedis
) -> None:
    await redis.hset(
        "circuit_breaker:kvk",
        mapping={"state": pybreaker.STATE_OPEN, "failures": 3, "opened_at": time.time() - 60},
    )
    release = asyncio.Event()

    async def _slow() -> str:
        await release.wait()
        return "ok"

    trial = asyncio.create_task(breaker.call(_slow))
    await asyncio.sleep(0)
    assert await breaker.state() == pybreaker.STATE_HALF_OPEN
    assert redis.expiry["circuit_breaker:kvk:trial"] == 30

    with pytest.raises(pybreaker.CircuitBreakerError, match="trial call in flight"):
        await breaker.call(_ok)

    release.set()
    assert await trial == "ok"
    assert await breaker.state() == pybreaker.STATE_CLOSED
    assert "circuit_breaker:kvk:trial" not in redis.values
    assert await breaker.call(_ok) == "ok"
