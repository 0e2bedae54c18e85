"""Clients API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    Pagination,
    get_audit_context,
    get_btw_client,
    get_db,
    get_is_admin,
    get_kvk_client,
    get_pagination,
    require_permissions,
)
from src.core.logging import client_id_ctx, get_logger
from src.integrations.btw import BTWClient
from src.integrations.kvk import KvKClient
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.client import (
    Client,
    ClientValidation,
    OnboardingStatus,
    ValidationStatus,
    ValidationType,
)
from src.models.user import User
from src.services.audit import AuditContext, log_action
from src.services.permissions import PERMISSIONS as P
from src.services.workflow import WorkflowService
from src.validation.formats import (
    ValidationResult,
    validate_account_holder,
    validate_address,
    validate_company_name,
    validate_email_address,
    validate_iban,
    validate_kvk_number,
    validate_phone_number,
    validate_postal_code,
    validate_vat_number,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])

DUPLICATE_CLIENT = "Client with this KVK number, VAT number, or email already exists"

# Fields that invalidate an earlier registry check when they change.
REVALIDATED_FIELDS = {
    "kvk_number": ("kvk_validated", "kvk_validated_at"),
    "vat_number": ("btw_validated", "btw_validated_at"),
    "iban": ("iban_validated", "iban_validated_at"),
}


class ClientCreateRequest(BaseModel):
    """Payload for creating a client through the onboarding wizard."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    company: str = Field(min_length=1, max_length=200)
    kvk_number: str = Field(min_length=1, max_length=20)
    vat_number: str = Field(min_length=1, max_length=30)
    business_type: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=200)
    postal_code: str | None = Field(default=None, max_length=10)
    city: str | None = Field(default=None, max_length=100)
    country: str = Field(default="NL", min_length=2, max_length=2)
    contact_name: str | None = Field(default=None, max_length=200)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=50)
    contact_department: str | None = Field(default=None, max_length=100)
    iban: str = Field(min_length=1, max_length=42)
    bank_name: str | None = Field(default=None, max_length=100)
    account_holder: str | None = Field(default=None, max_length=100)
    accepted_terms: bool = False
    accepted_privacy: bool = False


class ClientUpdateRequest(BaseModel):
    """Payload for updating a client.

    ``version`` is the version the caller last read; the update is refused
    when the client has changed since.
    """

    version: int | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)
    kvk_number: str | None = Field(default=None, max_length=20)
    vat_number: str | None = Field(default=None, max_length=30)
    business_type: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=200)
    postal_code: str | None = Field(default=None, max_length=10)
    city: str | None = Field(default=None, max_length=100)
    contact_name: str | None = Field(default=None, max_length=200)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=50)
    contact_department: str | None = Field(default=None, max_length=100)
    iban: str | None = Field(default=None, max_length=42)
    bank_name: str | None = Field(default=None, max_length=100)
    account_holder: str | None = Field(default=None, max_length=100)


class ClientResponse(BaseModel):
    """Client response model."""

    id: int
    user_id: int
    name: str
    email: str
    phone: str | None
    company: str | None
    kvk_number: str | None
    vat_number: str | None
    business_type: str | None
    address: str | None
    postal_code: str | None
    city: str | None
    country: str
    contact_name: str | None
    contact_email: str | None
    iban: str | None
    bank_name: str | None
    account_holder: str | None
    kvk_validated: bool
    btw_validated: bool
    iban_validated: bool
    email_confirmed: bool
    onboarding_status: str
    onboarding_step: str
    approval_status: str
    approved_at: datetime | None
    rejection_reason: str | None
    is_active: bool
    can_create_invoices: bool
    total_invoiced: Decimal
    version: int
    created_at: datetime
    updated_at: datetime | None


class ClientListResponse(BaseModel):
    """Paginated client list response."""

    items: list[ClientResponse]
    total: int
    limit: int
    offset: int


class ValidationResponse(BaseModel):
    id: int
    client_id: int
    validation_type: str
    status: str
    overall_score: float | None
    findings: list[str]
    checks: dict[str, Any]
    created_at: datetime


def _to_client_response(client: Client) -> ClientResponse:
    """Map SQLAlchemy client model to response model."""
    return ClientResponse(
        id=client.id,
        user_id=client.user_id,
        name=client.name,
        email=client.email,
        phone=client.phone,
        company=client.company,
        kvk_number=client.kvk_number,
        vat_number=client.vat_number,
        business_type=client.business_type,
        address=client.address,
        postal_code=client.postal_code,
        city=client.city,
        country=client.country,
        contact_name=client.contact_name,
        contact_email=client.contact_email,
        iban=client.iban,
        bank_name=client.bank_name,
        account_holder=client.account_holder,
        kvk_validated=client.kvk_validated,
        btw_validated=client.btw_validated,
        iban_validated=client.iban_validated,
        email_confirmed=client.email_confirmed,
        onboarding_status=client.onboarding_status.value,
        onboarding_step=client.onboarding_step.value,
        approval_status=client.approval_status.value,
        approved_at=client.approved_at,
        rejection_reason=client.rejection_reason,
        is_active=client.is_active,
        can_create_invoices=client.can_create_invoices,
        total_invoiced=client.total_invoiced,
        version=client.version,
        created_at=client.created_at,
        updated_at=client.updated_at,
    )


def _to_validation_response(validation: ClientValidation) -> ValidationResponse:
    checks = {
        name: value
        for name, value in (
            ("kvk", validation.kvk_check),
            ("btw", validation.btw_check),
            ("iban", validation.iban_check),
            ("email", validation.email_check),
            ("phone", validation.phone_check),
            ("address", validation.address_check),
        )
        if value is not None
    }
    return ValidationResponse(
        id=validation.id,
        client_id=validation.client_id,
        validation_type=validation.validation_type.value,
        status=validation.status.value,
        overall_score=validation.overall_score,
        findings=list(validation.findings or []),
        checks=checks,
        created_at=validation.created_at,
    )


def _field_checks(values: dict[str, Any], country: str) -> dict[str, ValidationResult]:
    """Run the format validator for every supplied field."""
    checks: dict[str, ValidationResult] = {}
    if values.get("email") is not None:
        checks["email"] = validate_email_address(values["email"])
    if values.get("contact_email"):
        checks["contact_email"] = validate_email_address(values["contact_email"])
    if values.get("phone"):
        checks["phone"] = validate_phone_number(values["phone"], country)
    if values.get("contact_phone"):
        checks["contact_phone"] = validate_phone_number(values["contact_phone"], country)
    if values.get("company") is not None:
        checks["company"] = validate_company_name(values["company"])
    if values.get("kvk_number") is not None:
        checks["kvk_number"] = validate_kvk_number(values["kvk_number"])
    if values.get("vat_number") is not None:
        checks["vat_number"] = validate_vat_number(values["vat_number"])
    if values.get("iban") is not None:
        checks["iban"] = validate_iban(values["iban"])
    if values.get("address"):
        checks["address"] = validate_address(values["address"])
    if values.get("postal_code"):
        checks["postal_code"] = validate_postal_code(values["postal_code"], country)
    if values.get("account_holder"):
        checks["account_holder"] = validate_account_holder(
            values["account_holder"], values.get("company")
        )
    return checks


def _raise_if_invalid(
    checks: dict[str, ValidationResult], extra: dict[str, str] | None = None
) -> None:
    errors = {name: result.error for name, result in checks.items() if not result.is_valid}
    errors.update(extra or {})
    if errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Validation failed", "errors": errors},
        )


async def _find_duplicate(
    db: AsyncSession,
    user_id: int,
    values: dict[str, Any],
    exclude_id: int | None = None,
) -> Client | None:
    conditions = [
        getattr(Client, name) == values[name]
        for name in ("kvk_number", "vat_number", "email")
        if values.get(name)
    ]
    if not conditions:
        return None
    stmt = select(Client).where(Client.user_id == user_id, or_(*conditions))
    if exclude_id is not None:
        stmt = stmt.where(Client.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def _flush_unique(db: AsyncSession, user_id: int) -> None:
    """Flush, reporting a lost race on the KvK or VAT constraint as a duplicate."""
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.info("client_duplicate_on_flush", user_id=user_id, error=str(exc.orig))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_CLIENT) from exc


async def load_client_for(
    db: AsyncSession, client_id: int, user: User, admin: bool
) -> Client:
    """Fetch a client the user may see; other users' clients look absent."""
    client = await db.get(Client, client_id)
    if client is None or (not admin and client.user_id != user.id):
        raise HTTPException(status_code=404, detail="Client not found")
    client_id_ctx.set(client.id)
    return client


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    payload: ClientCreateRequest,
    user: User = Depends(require_permissions(P.CLIENT_CREATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    """Create a client in PENDING_VALIDATION with an initial format validation."""
    values = payload.model_dump()
    country = payload.country.upper()
    checks = _field_checks(values, country)
    consent_errors = {}
    if not payload.accepted_terms:
        consent_errors["accepted_terms"] = "Terms must be accepted"
    if not payload.accepted_privacy:
        consent_errors["accepted_privacy"] = "Privacy policy must be accepted"
    _raise_if_invalid(checks, consent_errors)

    normalized = {name: result.normalized for name, result in checks.items()}
    values.update(normalized)

    if await _find_duplicate(db, user.id, values) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DUPLICATE_CLIENT,
        )

    now = utcnow()
    client = Client(
        user_id=user.id,
        name=payload.name.strip(),
        email=values["email"],
        phone=values.get("phone"),
        company=values["company"],
        kvk_number=values["kvk_number"],
        vat_number=values["vat_number"],
        business_type=payload.business_type,
        address=values.get("address"),
        postal_code=values.get("postal_code"),
        city=payload.city,
        country=country,
        contact_name=payload.contact_name,
        contact_email=values.get("contact_email"),
        contact_phone=values.get("contact_phone"),
        contact_department=payload.contact_department,
        iban=values["iban"],
        bank_name=payload.bank_name,
        account_holder=values.get("account_holder"),
        iban_validated=True,
        iban_validated_at=now,
        onboarding_status=OnboardingStatus.PENDING_VALIDATION,
        is_active=True,
        can_create_invoices=False,
    )
    db.add(client)
    await _flush_unique(db, user.id)
    client_id_ctx.set(client.id)

    def _check(name: str) -> dict[str, Any] | None:
        result = checks.get(name)
        return None if result is None else {"passed": result.is_valid, **result.to_dict()}

    address_check = _check("address")
    if address_check is not None and "postal_code" in checks:
        address_check["postal_code"] = checks["postal_code"].to_dict()
    db.add(
        ClientValidation(
            client_id=client.id,
            validation_type=ValidationType.AUTOMATIC,
            status=ValidationStatus.PENDING,
            kvk_check=_check("kvk_number"),
            btw_check=_check("vat_number"),
            iban_check=_check("iban"),
            email_check=_check("email"),
            phone_check=_check("phone"),
            address_check=address_check,
            overall_score=1.0,
            findings=[
                warning for result in checks.values() for warning in result.warnings
            ],
            requested_by=user.id,
        )
    )
    await log_action(
        db,
        AuditAction.CREATE,
        "Client",
        client.id,
        context=context,
        new_values={
            "name": client.name,
            "email": client.email,
            "company": client.company,
            "onboarding_status": client.onboarding_status.value,
        },
        note="Client created via onboarding wizard",
    )
    await db.flush()
    logger.info("client_created", client_id=client.id)
    return _to_client_response(client)


@router.get("", response_model=ClientListResponse)
async def list_clients(
    onboarding_status: OnboardingStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, min_length=1),
    page: Pagination = Depends(get_pagination),
    user: User = Depends(require_permissions(P.CLIENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> ClientListResponse:
    """List clients; non-admin users only see their own."""
    filters = []
    if not admin:
        filters.append(Client.user_id == user.id)
    if onboarding_status is not None:
        filters.append(Client.onboarding_status == onboarding_status)
    if search:
        search_pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Client.name).like(search_pattern),
                func.lower(Client.email).like(search_pattern),
                func.lower(func.coalesce(Client.company, "")).like(search_pattern),
            )
        )

    count_stmt = select(func.count(Client.id))
    list_stmt = select(Client).order_by(Client.created_at.desc(), Client.id.desc())
    if filters:
        count_stmt = count_stmt.where(*filters)
        list_stmt = list_stmt.where(*filters)

    total_result = await db.execute(count_stmt)
    total = int(total_result.scalar() or 0)

    clients_result = await db.execute(list_stmt.limit(page.limit).offset(page.offset))
    clients = clients_result.scalars().all()

    return ClientListResponse(
        items=[_to_client_response(client) for client in clients],
        total=total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: int,
    user: User = Depends(require_permissions(P.CLIENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    """Get client by ID."""
    client = await load_client_for(db, client_id, user, admin)
    return _to_client_response(client)


@router.patch("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: int,
    payload: ClientUpdateRequest,
    user: User = Depends(require_permissions(P.CLIENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    """Partially update client fields.

    Changing a KvK number, VAT number or IBAN clears its validation flag.
    """
    client = await load_client_for(db, client_id, user, admin)
    if payload.version is not None and payload.version != client.version:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Client was modified by another request",
        )

    updates = payload.model_dump(exclude_unset=True, exclude={"version"})
    checks = _field_checks(updates, client.country)
    _raise_if_invalid(checks)
    updates.update({name: result.normalized for name, result in checks.items()})

    if await _find_duplicate(db, client.user_id, updates, exclude_id=client.id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DUPLICATE_CLIENT,
        )

    old_values: dict[str, Any] = {}
    new_values: dict[str, Any] = {}
    for name, value in updates.items():
        if value is None and name in ("name", "email"):
            continue
        current = getattr(client, name)
        if current == value:
            continue
        old_values[name] = current
        new_values[name] = value
        setattr(client, name, value.strip() if name == "name" else value)
        if name in REVALIDATED_FIELDS:
            flag, stamp = REVALIDATED_FIELDS[name]
            setattr(client, flag, False)
            setattr(client, stamp, None)

    if new_values:
        await _flush_unique(db, client.user_id)
        await log_action(
            db,
            AuditAction.UPDATE,
            "Client",
            client.id,
            context=context,
            old_values=old_values,
            new_values=new_values,
            note="Client updated",
        )
    return _to_client_response(client)


@router.post("/{client_id}/validate", response_model=ValidationResponse)
async def validate_client(
    client_id: int,
    user: User = Depends(require_permissions(P.CLIENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    kvk_client: KvKClient = Depends(get_kvk_client),
    btw_client: BTWClient = Depends(get_btw_client),
    db: AsyncSession = Depends(get_db),
) -> ValidationResponse:
    """Run format checks and registry lookups for a client."""
    client = await load_client_for(db, client_id, user, admin)
    validation = await WorkflowService(db, context).validate_client(
        client, kvk_client, btw_client
    )
    return _to_validation_response(validation)


@router.post("/{client_id}/resubmit")
async def resubmit_client(
    client_id: int,
    user: User = Depends(require_permissions(P.CLIENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Send a rejected client back into onboarding."""
    client = await load_client_for(db, client_id, user, admin)
    state = await WorkflowService(db, context).resubmit(client)
    return {
        "client": _to_client_response(client).model_dump(mode="json"),
        "workflow": state.to_dict(),
    }


@router.get("/{client_id}/validations", response_model=list[ValidationResponse])
async def list_client_validations(
    client_id: int,
    user: User = Depends(require_permissions(P.CLIENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> list[ValidationResponse]:
    """Validation runs for a client, newest first."""
    client = await load_client_for(db, client_id, user, admin)
    result = await db.execute(
        select(ClientValidation)
        .where(ClientValidation.client_id == client.id)
        .order_by(ClientValidation.id.desc())
    )
    return [_to_validation_response(v) for v in result.scalars().all()]
