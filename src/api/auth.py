"""Account registration and session login."""

import re
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import SESSION_USER_KEY, client_ip, get_current_user, get_db
from src.api.limiter import limiter
from src.core.config import settings
from src.core.logging import get_logger, user_id_ctx
from src.core.security import hash_password, verify_password
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.user import User, UserRoleType
from src.services.audit import AuditContext, log_action
from src.services.permissions import (
    assign_role,
    get_active_roles,
    get_user_permissions,
    super_admin_exists,
)
from src.validation.formats import validate_email_address

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8
# bcrypt ignores input past 72 bytes
MAX_PASSWORD_LENGTH = 72


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=200)
    name: str | None = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=200)


class UserResponse(BaseModel):
    """The signed-in account with its effective roles and permissions."""

    id: int
    email: str
    name: str | None
    roles: list[str]
    permissions: list[str]
    last_login_at: datetime | None
    created_at: datetime


def password_problems(password: str) -> list[str]:
    """Reasons a password is too weak; empty when acceptable."""
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        problems.append(f"Password must be at most {MAX_PASSWORD_LENGTH} bytes")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain an uppercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain a digit")
    return problems


async def _to_user_response(db: AsyncSession, user: User) -> UserResponse:
    roles = await get_active_roles(db, user.id)
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        roles=sorted({role.role.value for role in roles}),
        permissions=await get_user_permissions(db, user.id),
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Create an account and sign it in.

    The first address from ``ADMIN_EMAILS`` to register becomes SUPER_ADMIN.
    Everyone else, listed addresses included once a SUPER_ADMIN exists,
    gets the USER role; further admins are appointed through the role API.
    """
    email_check = validate_email_address(payload.email)
    if not email_check.is_valid:
        raise HTTPException(status_code=400, detail=email_check.error)
    problems = password_problems(payload.password)
    if problems:
        raise HTTPException(status_code=400, detail="; ".join(problems))

    email = email_check.normalized
    existing = await db.execute(select(User).where(func.lower(User.email) == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Email is already registered"
        )

    user = User(
        email=email,
        name=(payload.name or "").strip() or None,
        password_hash=hash_password(payload.password),
        is_active=True,
    )
    db.add(user)
    await db.flush()

    role = UserRoleType.USER
    if email in settings.admin_emails:
        if await super_admin_exists(db):
            logger.warning("admin_bootstrap_skipped", user_id=user.id, email=email)
        else:
            role = UserRoleType.SUPER_ADMIN
            logger.warning("admin_bootstrap_granted", user_id=user.id, email=email)
    await assign_role(db, user.id, role)
    await log_action(
        db,
        AuditAction.CREATE,
        "User",
        user.id,
        context=AuditContext(
            user_id=user.id,
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        ),
        new_values={"email": user.email, "role": role.value},
        note="Account registered",
    )

    request.session[SESSION_USER_KEY] = user.id
    user_id_ctx.set(user.id)
    logger.info("user_registered", user_id=user.id, role=role.value)
    return await _to_user_response(db, user)


@router.post("/login", response_model=UserResponse)
@limiter.limit(settings.login_rate_limit)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Sign in with email and password."""
    email = payload.email.strip().lower()
    result = await db.execute(select(User).where(func.lower(User.email) == email))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("login_failed", ip_address=client_ip(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated"
        )

    user.last_login_at = utcnow()
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id
    user_id_ctx.set(user.id)
    await log_action(
        db,
        AuditAction.LOGIN,
        "User",
        user.id,
        context=AuditContext(
            user_id=user.id,
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        ),
    )
    logger.info("user_logged_in", user_id=user.id)
    return await _to_user_response(db, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    await log_action(
        db,
        AuditAction.LOGOUT,
        "User",
        user.id,
        context=AuditContext(user_id=user.id, ip_address=client_ip(request)),
    )
    request.session.clear()
    logger.info("user_logged_out", user_id=user.id)


@router.get("/me", response_model=UserResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return await _to_user_response(db, user)
