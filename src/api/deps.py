"""FastAPI dependencies: database, Redis, session user, permissions, registries."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import user_id_ctx
from src.integrations.btw import BTWClient
from src.integrations.kvk import KvKClient
from src.models.user import User
from src.services.audit import AuditContext
from src.services.permissions import check_permissions, is_admin

if TYPE_CHECKING:
    import redis.asyncio as redis

SESSION_USER_KEY = "user_id"


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session from the app's session factory.

    Args:
        request: FastAPI request containing app state.

    Yields:
        AsyncSession for database operations with automatic commit/rollback.
    """
    async with request.app.state.async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_redis(request: Request) -> "redis.Redis":
    """Get Redis connection pool from app state.

    Args:
        request: FastAPI request containing app state.

    Returns:
        Redis connection pool for caches, rate limits and breaker state.
    """
    return request.app.state.redis


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the signed-in user from the session cookie.

    Raises:
        HTTPException: 401 when there is no session or the account is gone
            or deactivated.
    """
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    user = await db.get(User, int(user_id))
    if user is None or not user.is_active:
        request.session.clear()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    user_id_ctx.set(user.id)
    return user


def require_permissions(*permissions: str) -> Callable[..., Awaitable[User]]:
    """Build a dependency that requires every listed permission.

    Usage::

        @router.get("", dependencies=[Depends(require_permissions(P.CLIENT_READ))])
    """

    async def dependency(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        check = await check_permissions(db, user.id, list(permissions))
        if not check.has_permission:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied: {check.reason}",
            )
        return user

    return dependency


async def get_is_admin(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> bool:
    return await is_admin(db, user.id)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_audit_context(
    request: Request,
    user: User = Depends(get_current_user),
) -> AuditContext:
    """Who is acting, and from where, for audit entries."""
    return AuditContext(
        user_id=user.id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


async def get_kvk_client(request: Request) -> KvKClient:
    return KvKClient(
        request.app.state.redis, getattr(request.app.state, "http_client", None)
    )


async def get_btw_client(request: Request) -> BTWClient:
    return BTWClient(
        request.app.state.redis, getattr(request.app.state, "http_client", None)
    )


@dataclass
class Pagination:
    limit: int
    offset: int


def get_pagination(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> Pagination:
    """Shared ``limit``/``offset`` query parameters."""
    return Pagination(limit=limit, offset=offset)
