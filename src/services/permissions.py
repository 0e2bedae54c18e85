"""Role-based permission checks.

Every role maps onto a fixed list of ``resource:action`` strings. A user's
rights are the union of the permissions of their active, unexpired role
assignments plus any custom permissions stored on those assignments.
"""

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.models.base import utcnow
from src.models.client import ApprovalStatus, Client
from src.models.user import UserRole, UserRoleType

logger = get_logger(__name__)


class PERMISSIONS:
    """Permission strings, grouped by resource."""

    CLIENT_CREATE = "client:create"
    CLIENT_READ = "client:read"
    CLIENT_UPDATE = "client:update"
    CLIENT_DELETE = "client:delete"
    CLIENT_APPROVE = "client:approve"
    CLIENT_REJECT = "client:reject"

    INVOICE_CREATE = "invoice:create"
    INVOICE_READ = "invoice:read"
    INVOICE_UPDATE = "invoice:update"
    INVOICE_DELETE = "invoice:delete"
    INVOICE_SEND = "invoice:send"

    ADMIN_DASHBOARD = "admin:dashboard"
    ADMIN_USERS = "admin:users"
    ADMIN_APPROVALS = "admin:approvals"
    ADMIN_AUDIT = "admin:audit"
    ADMIN_SETTINGS = "admin:settings"

    CREDITOR_CREATE = "creditor:create"
    CREDITOR_READ = "creditor:read"
    CREDITOR_UPDATE = "creditor:update"
    CREDITOR_DELETE = "creditor:delete"
    CREDITOR_VALIDATE = "creditor:validate"

    DOCUMENT_CREATE = "document:create"
    DOCUMENT_READ = "document:read"
    DOCUMENT_UPDATE = "document:update"
    DOCUMENT_DELETE = "document:delete"

    APPOINTMENT_CREATE = "appointment:create"
    APPOINTMENT_READ = "appointment:read"
    APPOINTMENT_UPDATE = "appointment:update"
    APPOINTMENT_DELETE = "appointment:delete"

    @classmethod
    def all(cls) -> list[str]:
        return [
            value
            for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, str)
        ]


P = PERMISSIONS

ROLE_PERMISSIONS: dict[UserRoleType, list[str]] = {
    UserRoleType.SUPER_ADMIN: PERMISSIONS.all(),
    UserRoleType.ADMIN: [
        P.CLIENT_READ,
        P.CLIENT_APPROVE,
        P.CLIENT_REJECT,
        P.INVOICE_READ,
        P.ADMIN_DASHBOARD,
        P.ADMIN_APPROVALS,
        P.ADMIN_AUDIT,
        P.CREDITOR_READ,
        P.CREDITOR_VALIDATE,
        P.DOCUMENT_READ,
        P.APPOINTMENT_READ,
    ],
    UserRoleType.MANAGER: [
        P.CLIENT_READ,
        P.CLIENT_UPDATE,
        P.INVOICE_CREATE,
        P.INVOICE_READ,
        P.INVOICE_UPDATE,
        P.INVOICE_SEND,
        P.CREDITOR_CREATE,
        P.CREDITOR_READ,
        P.CREDITOR_UPDATE,
        P.DOCUMENT_CREATE,
        P.DOCUMENT_READ,
        P.DOCUMENT_UPDATE,
        P.APPOINTMENT_CREATE,
        P.APPOINTMENT_READ,
        P.APPOINTMENT_UPDATE,
    ],
    UserRoleType.ACCOUNTANT: [
        P.CLIENT_READ,
        P.INVOICE_CREATE,
        P.INVOICE_READ,
        P.INVOICE_UPDATE,
        P.CREDITOR_CREATE,
        P.CREDITOR_READ,
        P.CREDITOR_UPDATE,
        P.CREDITOR_VALIDATE,
        P.DOCUMENT_CREATE,
        P.DOCUMENT_READ,
        P.DOCUMENT_UPDATE,
    ],
    UserRoleType.USER: [
        P.CLIENT_CREATE,
        P.CLIENT_READ,
        P.CLIENT_UPDATE,
        P.INVOICE_CREATE,
        P.INVOICE_READ,
        P.INVOICE_UPDATE,
        P.INVOICE_SEND,
        P.CREDITOR_CREATE,
        P.CREDITOR_READ,
        P.CREDITOR_UPDATE,
        P.DOCUMENT_CREATE,
        P.DOCUMENT_READ,
        P.DOCUMENT_UPDATE,
        P.APPOINTMENT_CREATE,
        P.APPOINTMENT_READ,
        P.APPOINTMENT_UPDATE,
    ],
    UserRoleType.CLIENT_VIEWER: [
        P.CLIENT_READ,
        P.INVOICE_READ,
        P.DOCUMENT_READ,
        P.APPOINTMENT_READ,
    ],
    UserRoleType.INVOICE_MANAGER: [
        P.CLIENT_READ,
        P.INVOICE_CREATE,
        P.INVOICE_READ,
        P.INVOICE_UPDATE,
        P.INVOICE_SEND,
        P.DOCUMENT_CREATE,
        P.DOCUMENT_READ,
    ],
    UserRoleType.CREDITOR_MANAGER: [
        P.CREDITOR_CREATE,
        P.CREDITOR_READ,
        P.CREDITOR_UPDATE,
        P.CREDITOR_VALIDATE,
        P.DOCUMENT_READ,
    ],
    UserRoleType.READ_ONLY: [
        P.CLIENT_READ,
        P.INVOICE_READ,
        P.CREDITOR_READ,
        P.DOCUMENT_READ,
        P.APPOINTMENT_READ,
    ],
}

# Lowest to highest.
ROLE_HIERARCHY: list[UserRoleType] = [
    UserRoleType.READ_ONLY,
    UserRoleType.CLIENT_VIEWER,
    UserRoleType.CREDITOR_MANAGER,
    UserRoleType.INVOICE_MANAGER,
    UserRoleType.USER,
    UserRoleType.ACCOUNTANT,
    UserRoleType.MANAGER,
    UserRoleType.ADMIN,
    UserRoleType.SUPER_ADMIN,
]


@dataclass
class PermissionCheck:
    """Outcome of a permission check."""

    has_permission: bool
    reason: str | None = None
    required_permissions: list[str] = field(default_factory=list)
    required_role: UserRoleType | None = None


def minimum_role_for(permission: str) -> UserRoleType | None:
    """Return the lowest role in the hierarchy that carries ``permission``."""
    for role in ROLE_HIERARCHY:
        if permission in ROLE_PERMISSIONS[role]:
            return role
    return None


def _role_grants(role: UserRole) -> set[str]:
    return set(ROLE_PERMISSIONS.get(role.role, [])) | set(role.permissions or [])


async def get_active_roles(db: AsyncSession, user_id: int) -> list[UserRole]:
    """Return the user's active role assignments that have not expired."""
    now = utcnow()
    result = await db.execute(
        select(UserRole).where(
            UserRole.user_id == user_id,
            UserRole.is_active.is_(True),
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
        )
    )
    return list(result.scalars().all())


async def check_permission(
    db: AsyncSession,
    user_id: int,
    permission: str,
    resource_id: str | int | None = None,
) -> PermissionCheck:
    """Check whether a user holds ``permission``.

    A scoped role only counts when no resource is named or when the named
    resource is the role's own ``scope_id``.
    """
    roles = await get_active_roles(db, user_id)
    if not roles:
        return PermissionCheck(
            has_permission=False,
            reason="No active roles found",
            required_permissions=[permission],
        )

    for role in roles:
        if permission not in _role_grants(role):
            continue
        if role.scope_type and role.scope_id and resource_id is not None:
            if role.scope_id != str(resource_id):
                continue
        return PermissionCheck(has_permission=True)

    return PermissionCheck(
        has_permission=False,
        reason="Insufficient permissions",
        required_permissions=[permission],
        required_role=minimum_role_for(permission),
    )


async def check_permissions(
    db: AsyncSession,
    user_id: int,
    permissions: list[str],
    resource_id: str | int | None = None,
) -> PermissionCheck:
    """Require every permission in ``permissions``."""
    missing = []
    for permission in permissions:
        check = await check_permission(db, user_id, permission, resource_id)
        if not check.has_permission:
            missing.append(permission)

    if not missing:
        return PermissionCheck(has_permission=True)
    return PermissionCheck(
        has_permission=False,
        reason="Missing required permissions",
        required_permissions=missing,
    )


async def get_user_permissions(db: AsyncSession, user_id: int) -> list[str]:
    """Return every permission the user currently holds, sorted."""
    granted: set[str] = set()
    for role in await get_active_roles(db, user_id):
        granted |= _role_grants(role)
    return sorted(granted)


async def assign_role(
    db: AsyncSession,
    user_id: int,
    role: UserRoleType,
    assigned_by: int | None = None,
    expires_at: datetime | None = None,
    scope_type: str | None = None,
    scope_id: str | None = None,
    permissions: list[str] | None = None,
) -> UserRole:
    """Create an active role assignment.

    ``permissions`` adds custom grants on top of the role's own table entry.
    """
    assignment = UserRole(
        user_id=user_id,
        role=role,
        permissions=list(permissions or []),
        assigned_by=assigned_by,
        expires_at=expires_at,
        scope_type=scope_type,
        scope_id=scope_id,
        is_active=True,
    )
    db.add(assignment)
    await db.flush()
    logger.info(
        "role_assigned",
        user_id=user_id,
        role=role.value,
        assigned_by=assigned_by,
        scope_type=scope_type,
        scope_id=scope_id,
    )
    return assignment


async def revoke_role(db: AsyncSession, role_id: int) -> UserRole | None:
    """Deactivate a role assignment. Returns None if it does not exist."""
    assignment = await db.get(UserRole, role_id)
    if assignment is None:
        return None
    assignment.is_active = False
    await db.flush()
    logger.info("role_revoked", user_id=assignment.user_id, role=assignment.role.value)
    return assignment


async def super_admin_exists(db: AsyncSession) -> bool:
    """True once any account holds an active SUPER_ADMIN assignment."""
    result = await db.execute(
        select(UserRole.id)
        .where(UserRole.role == UserRoleType.SUPER_ADMIN, UserRole.is_active.is_(True))
        .limit(1)
    )
    return result.first() is not None


async def is_admin(db: AsyncSession, user_id: int) -> bool:
    """True when the user may see every client (admin dashboard access)."""
    check = await check_permission(db, user_id, PERMISSIONS.ADMIN_DASHBOARD)
    return check.has_permission


@dataclass
class InvoicePermission:
    allowed: bool
    reason: str | None = None
    client: Client | None = None


async def check_client_invoice_permission(
    db: AsyncSession, user_id: int, client_id: int
) -> InvoicePermission:
    """Decide whether ``user_id`` may invoice ``client_id``.

    The user needs ``invoice:create`` and the client must exist, be active,
    be approved and have invoicing enabled.
    """
    check = await check_permission(
        db, user_id, PERMISSIONS.INVOICE_CREATE, resource_id=client_id
    )
    if not check.has_permission:
        return InvoicePermission(False, check.reason)

    client = await db.get(Client, client_id)
    if client is None:
        return InvoicePermission(False, "Client not found")
    if not client.is_active:
        return InvoicePermission(False, "Client account is inactive", client)
    if client.approval_status != ApprovalStatus.APPROVED:
        return InvoicePermission(
            False, "Client must be approved before invoices can be created", client
        )
    if not client.can_create_invoices:
        return InvoicePermission(
            False, "Client does not have invoice creation permission", client
        )
    return InvoicePermission(True, client=client)
