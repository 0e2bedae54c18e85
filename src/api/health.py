"""Liveness endpoint covering the database, Redis and the registry circuits."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db, get_redis
from src.core.config import settings
from src.core.logging import get_logger
from src.core.redis import check_redis_health
from src.integrations.breaker import RegistryCircuitBreaker

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

REGISTRIES = ("kvk", "btw")


class HealthResponse(BaseModel):
    status: str
    environment: str
    db: str
    redis: str
    registries: dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """Report component connectivity.

    ``status`` is ``degraded`` when the database or Redis is unreachable.
    An open registry circuit is reported but does not degrade the status,
    since lookups fall back to format checks.
    """
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.exception("database_health_check_failed", error=str(e))
        db_status = "disconnected"

    pool = await get_redis(request)
    redis_status = "connected" if await check_redis_health(pool) else "disconnected"

    registries = {}
    if redis_status == "connected":
        for name in REGISTRIES:
            registries[name] = await RegistryCircuitBreaker(name, pool).state()

    healthy = db_status == "connected" and redis_status == "connected"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        environment=settings.environment,
        db=db_status,
        redis=redis_status,
        registries=registries,
    )
