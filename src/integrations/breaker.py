"""Circuit breaker for registry calls with Redis-backed shared state.

Protects request handlers from waiting on a registry (KvK, BTW) that is down.
State lives in a Redis hash so every worker sees the same circuit:

    circuit_breaker:<name>        ->  {state, failures, opened_at}
    circuit_breaker:<name>:trial  ->  marker held by the one half-open trial call

State names are pybreaker's constants and an open circuit raises
``pybreaker.CircuitBreakerError`` so callers handle a single error type.

Configuration:
    - fail_max: consecutive failures that open the circuit
    - reset_timeout: seconds before an open circuit lets a single trial call through
"""

import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, ParamSpec, TypeVar

import pybreaker
import structlog

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


class RegistryCircuitBreaker:
    """Async circuit breaker keyed by registry name.

    Usage:
        breaker = RegistryCircuitBreaker("kvk", redis_pool)
        data = await breaker.call(fetch_company, "12345678")

    Attributes:
        name: Registry name, used in the Redis key and log events.
        fail_max: Consecutive failures before the circuit opens.
        reset_timeout: Seconds an open circuit waits before half-opening.
        exclude: Predicate for exceptions that are answers rather than
            outages (e.g. "company not found"); those never count.
    """

    DEFAULT_FAIL_MAX = 5
    DEFAULT_RESET_TIMEOUT = 30

    def __init__(
        self,
        name: str,
        pool: "redis.Redis",
        fail_max: int = DEFAULT_FAIL_MAX,
        reset_timeout: int = DEFAULT_RESET_TIMEOUT,
        exclude: Callable[[Exception], bool] | None = None,
    ) -> None:
        self.name = name
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.exclude = exclude
        self._redis = pool
        self._key = f"circuit_breaker:{name}"
        self._trial_key = f"{self._key}:trial"

    async def state(self) -> str:
        """Current state, one of pybreaker's STATE_* constants."""
        stored = await self._redis.hgetall(self._key)
        return stored.get("state", pybreaker.STATE_CLOSED)

    async def failure_count(self) -> int:
        stored = await self._redis.hgetall(self._key)
        return int(stored.get("failures", 0))

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``func`` through the breaker.

        Raises:
            pybreaker.CircuitBreakerError: If the circuit is open, or half-open
                while another caller runs the trial.
            Exception: Whatever ``func`` raises.
        """
        stored = await self._redis.hgetall(self._key)
        state = stored.get("state", pybreaker.STATE_CLOSED)

        if state != pybreaker.STATE_CLOSED:
            state = await self._claim_trial(stored)

        try:
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                if self.exclude is not None and self.exclude(exc):
                    await self._on_success(state)
                else:
                    await self._on_failure(state)
                raise
            await self._on_success(state)
        finally:
            if state == pybreaker.STATE_HALF_OPEN:
                await self._redis.delete(self._trial_key)
        return result

    async def _claim_trial(self, stored: dict[str, str]) -> str:
        """Admit this caller as the single half-open trial, or raise.

        The trial marker expires after ``reset_timeout`` so a worker that dies
        mid-trial does not hold the circuit shut.
        """
        state = stored.get("state", pybreaker.STATE_CLOSED)
        if state == pybreaker.STATE_OPEN:
            elapsed = time.time() - float(stored.get("opened_at", 0))
            if elapsed < self.reset_timeout:
                logger.warning("circuit_breaker_rejected", circuit=self.name)
                raise pybreaker.CircuitBreakerError(f"Circuit '{self.name}' is open")

        claimed = await self._redis.set(self._trial_key, 1, nx=True, ex=self.reset_timeout)
        if not claimed:
            logger.warning("circuit_breaker_trial_in_flight", circuit=self.name)
            raise pybreaker.CircuitBreakerError(
                f"Circuit '{self.name}' is half-open with a trial call in flight"
            )

        if state == pybreaker.STATE_OPEN:
            await self._redis.hset(self._key, mapping={"state": pybreaker.STATE_HALF_OPEN})
            logger.info("circuit_breaker_half_open", circuit=self.name)
        return pybreaker.STATE_HALF_OPEN

    async def _on_success(self, state: str) -> None:
        if state == pybreaker.STATE_HALF_OPEN:
            logger.info("circuit_breaker_closed", circuit=self.name)
        if state != pybreaker.STATE_CLOSED or await self.failure_count():
            await self._redis.hset(
                self._key,
                mapping={"state": pybreaker.STATE_CLOSED, "failures": 0, "opened_at": 0},
            )

    async def _on_failure(self, state: str) -> None:
        if state == pybreaker.STATE_HALF_OPEN:
            await self._open(failures=self.fail_max)
            logger.warning("circuit_breaker_reopened", circuit=self.name)
            return

        failures = await self._redis.hincrby(self._key, "failures", 1)
        if failures >= self.fail_max:
            await self._open(failures=failures)
            logger.warning(
                "circuit_breaker_opened", circuit=self.name, failure_count=failures
            )

    async def _open(self, failures: int) -> None:
        await self._redis.hset(
            self._key,
            mapping={
                "state": pybreaker.STATE_OPEN,
                "failures": failures,
                "opened_at": time.time(),
            },
        )

    async def reset(self) -> None:
        await self._redis.delete(self._key, self._trial_key)
        logger.info("circuit_breaker_reset", circuit=self.name)


__all__ = ["RegistryCircuitBreaker"]
