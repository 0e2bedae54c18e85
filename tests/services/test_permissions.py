"""Tests for role-based permission checks."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import Client, User
from src.models.base import utcnow
from src.models.client import ApprovalStatus
from src.models.user import UserRoleType
from src.services.permissions import (
    PERMISSIONS,
    ROLE_PERMISSIONS,
    assign_role,
    check_client_invoice_permission,
    check_permission,
    check_permissions,
    get_user_permissions,
    is_admin,
    minimum_role_for,
    revoke_role,
)


async def _user(db: AsyncSession, email: str = "jan@bakkerij-jansen.nl") -> User:
    user = User(email=email, password_hash="x")
    db.add(user)
    await db.flush()
    return user


async def _client(db: AsyncSession, user: User, **fields) -> Client:
    client = Client(user_id=user.id, name="Anna de Vries", email="anna@devries-advies.nl", **fields)
    db.add(client)
    await db.flush()
    return client


def test_super_admin_holds_every_permission() -> None:
    assert set(ROLE_PERMISSIONS[UserRoleType.SUPER_ADMIN]) == set(PERMISSIONS.all())
    assert "creditor:validate" in PERMISSIONS.all()


def test_minimum_role_for() -> None:
    assert minimum_role_for(PERMISSIONS.CLIENT_READ) == UserRoleType.READ_ONLY
    assert minimum_role_for(PERMISSIONS.INVOICE_SEND) == UserRoleType.INVOICE_MANAGER
    assert minimum_role_for(PERMISSIONS.ADMIN_APPROVALS) == UserRoleType.ADMIN
    assert minimum_role_for(PERMISSIONS.ADMIN_SETTINGS) == UserRoleType.SUPER_ADMIN
    assert minimum_role_for("unknown:action") is None


@pytest.mark.asyncio
async def test_user_without_roles(db_session: AsyncSession) -> None:
    user = await _user(db_session)

    check = await check_permission(db_session, user.id, PERMISSIONS.CLIENT_READ)

    assert not check.has_permission
    assert check.reason == "No active roles found"


@pytest.mark.asyncio
async def test_role_grants_its_permissions(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(db_session, user.id, UserRoleType.USER)

    allowed = await check_permission(db_session, user.id, PERMISSIONS.INVOICE_CREATE)
    denied = await check_permission(db_session, user.id, PERMISSIONS.ADMIN_APPROVALS)

    assert allowed.has_permission
    assert not denied.has_permission
    assert denied.reason == "Insufficient permissions"
    assert denied.required_role == UserRoleType.ADMIN
    assert not await is_admin(db_session, user.id)


@pytest.mark.asyncio
async def test_expired_and_revoked_roles_do_not_count(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(
        db_session, user.id, UserRoleType.ADMIN, expires_at=utcnow() - timedelta(days=1)
    )
    manager = await assign_role(db_session, user.id, UserRoleType.MANAGER)
    await revoke_role(db_session, manager.id)

    assert await get_user_permissions(db_session, user.id) == []
    assert await revoke_role(db_session, 9999) is None


@pytest.mark.asyncio
async def test_custom_permissions_extend_role(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(
        db_session,
        user.id,
        UserRoleType.READ_ONLY,
        permissions=[PERMISSIONS.ADMIN_AUDIT],
    )

    permissions = await get_user_permissions(db_session, user.id)

    assert PERMISSIONS.ADMIN_AUDIT in permissions
    assert permissions == sorted(permissions)


@pytest.mark.asyncio
async def test_scoped_role_only_applies_to_its_resource(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(
        db_session,
        user.id,
        UserRoleType.INVOICE_MANAGER,
        scope_type="client",
        scope_id="7",
    )

    own = await check_permission(db_session, user.id, PERMISSIONS.INVOICE_CREATE, resource_id=7)
    other = await check_permission(db_session, user.id, PERMISSIONS.INVOICE_CREATE, resource_id=8)

    assert own.has_permission
    assert not other.has_permission


@pytest.mark.asyncio
async def test_check_permissions_lists_missing(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(db_session, user.id, UserRoleType.ADMIN)

    check = await check_permissions(
        db_session,
        user.id,
        [PERMISSIONS.CLIENT_APPROVE, PERMISSIONS.ADMIN_SETTINGS, PERMISSIONS.INVOICE_CREATE],
    )

    assert not check.has_permission
    assert check.required_permissions == [PERMISSIONS.ADMIN_SETTINGS, PERMISSIONS.INVOICE_CREATE]
    assert await is_admin(db_session, user.id)


@pytest.mark.asyncio
async def test_invoice_permission_requires_approved_client(db_session: AsyncSession) -> None:
    user = await _user(db_session)
    await assign_role(db_session, user.id, UserRoleType.USER)
    pending = await _client(db_session, user)
    approved = await _client(
        db_session,
        user,
        approval_status=ApprovalStatus.APPROVED,
        can_create_invoices=True,
    )
    inactive = await _client(
        db_session,
        user,
        approval_status=ApprovalStatus.APPROVED,
        can_create_invoices=True,
        is_active=False,
    )
    no_rights = await _client(
        db_session,
        user,
        approval_status=ApprovalStatus.APPROVED,
        can_create_invoices=False,
    )

    assert (await check_client_invoice_permission(db_session, user.id, approved.id)).allowed

    result = await check_client_invoice_permission(db_session, user.id, pending.id)
    assert result.reason == "Client must be approved before invoices can be created"

    result = await check_client_invoice_permission(db_session, user.id, inactive.id)
    assert result.reason == "Client account is inactive"

    result = await check_client_invoice_permission(db_session, user.id, no_rights.id)
    assert result.reason == "Client does not have invoice creation permission"

    result = await check_client_invoice_permission(db_session, user.id, 9999)
    assert result.reason == "Client not found"
