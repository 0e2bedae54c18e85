"""Standard service catalogue endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    Pagination,
    get_audit_context,
    get_db,
    get_pagination,
    require_permissions,
)
from src.models.invoice import UnitType
from src.models.service import StandardService
from src.models.user import User
from src.services.audit import AuditContext
from src.services.permissions import PERMISSIONS as P
from src.services.standard_services import (
    DEFAULT_CATEGORIES,
    DuplicateServiceError,
    ServiceNotFoundError,
    ServiceValidationError,
    calculate_statistics,
    create_service,
    deactivate_service,
    get_service,
    group_by_category,
    install_default_services,
    list_services,
    record_usage,
    update_service,
)

router = APIRouter(prefix="/api/standard-services", tags=["standard-services"])


class ServiceCreateRequest(BaseModel):
    name: str = Field(default="", max_length=200)
    default_rate: Decimal | None = None
    description: str | None = None
    category: str | None = None
    unit_type: UnitType = UnitType.HOURS


class ServiceUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    default_rate: Decimal | None = None
    description: str | None = None
    category: str | None = None
    unit_type: UnitType | None = None
    is_active: bool | None = None


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: str | None
    category: str | None
    default_rate: Decimal
    unit_type: str
    is_active: bool
    is_default: bool
    usage_count: int
    created_at: datetime
    updated_at: datetime


class ServiceListResponse(BaseModel):
    items: list[ServiceResponse]
    total: int
    limit: int
    offset: int
    categories: list[dict[str, Any]]
    statistics: dict[str, Any]


def _to_service_response(service: StandardService) -> ServiceResponse:
    return ServiceResponse(
        id=service.id,
        name=service.name,
        description=service.description,
        category=service.category,
        default_rate=service.default_rate,
        unit_type=service.unit_type.value,
        is_active=service.is_active,
        is_default=service.is_default,
        usage_count=service.usage_count or 0,
        created_at=service.created_at,
        updated_at=service.updated_at,
    )


def _validation_failed(exc: ServiceValidationError) -> HTTPException:
    return HTTPException(
        status_code=400, detail={"message": "Validation failed", "errors": exc.errors}
    )


@router.get("", response_model=ServiceListResponse)
async def get_services(
    search: str | None = Query(default=None, max_length=100),
    category: str | None = Query(default=None, max_length=50),
    active: bool | None = Query(default=None),
    page: Pagination = Depends(get_pagination),
    user: User = Depends(require_permissions(P.INVOICE_READ)),
    db: AsyncSession = Depends(get_db),
) -> ServiceListResponse:
    """The user's catalogue with category groups and statistics over all of it."""
    services, total = await list_services(
        db,
        user.id,
        search=search,
        category=category,
        active=active,
        limit=page.limit,
        offset=page.offset,
    )
    everything, _ = await list_services(db, user.id, limit=10_000)
    return ServiceListResponse(
        items=[_to_service_response(service) for service in services],
        total=total,
        limit=page.limit,
        offset=page.offset,
        categories=group_by_category(everything),
        statistics=calculate_statistics(everything),
    )


@router.get("/categories")
async def get_categories(
    _: User = Depends(require_permissions(P.INVOICE_READ)),
) -> list[str]:
    return list(DEFAULT_CATEGORIES)


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def post_service(
    payload: ServiceCreateRequest,
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> ServiceResponse:
    try:
        service = await create_service(
            db,
            user.id,
            name=payload.name,
            default_rate=payload.default_rate,
            description=payload.description,
            category=payload.category,
            unit_type=payload.unit_type,
            context=context,
        )
    except ServiceValidationError as exc:
        raise _validation_failed(exc) from exc
    except DuplicateServiceError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_service_response(service)


@router.post(
    "/defaults",
    response_model=list[ServiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def post_default_services(
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> list[ServiceResponse]:
    """Install the default catalogue; names already present are skipped."""
    created = await install_default_services(db, user.id)
    return [_to_service_response(service) for service in created]


@router.patch("/{service_id}", response_model=ServiceResponse)
async def patch_service(
    service_id: int,
    payload: ServiceUpdateRequest,
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> ServiceResponse:
    try:
        service = await get_service(db, service_id, user.id)
    except ServiceNotFoundError:
        raise HTTPException(status_code=404, detail="Service not found") from None
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    try:
        await update_service(db, service, updates, context)
    except ServiceValidationError as exc:
        raise _validation_failed(exc) from exc
    except DuplicateServiceError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_service_response(service)


@router.delete("/{service_id}", response_model=ServiceResponse)
async def delete_service(
    service_id: int,
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> ServiceResponse:
    """Deactivate a service; it stays visible with ``active=false``."""
    try:
        service = await get_service(db, service_id, user.id)
    except ServiceNotFoundError:
        raise HTTPException(status_code=404, detail="Service not found") from None
    await deactivate_service(db, service, context)
    return _to_service_response(service)


@router.post("/{service_id}/usage", response_model=ServiceResponse)
async def post_service_usage(
    service_id: int,
    user: User = Depends(require_permissions(P.INVOICE_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> ServiceResponse:
    """Count one use of a service on an invoice line; drives list ordering."""
    try:
        service = await get_service(db, service_id, user.id)
    except ServiceNotFoundError:
        raise HTTPException(status_code=404, detail="Service not found") from None
    await record_usage(db, service)
    return _to_service_response(service)
