"""Per-user catalogue of reusable invoice lines."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.models.audit import AuditAction
from src.models.invoice import UnitType
from src.models.service import StandardService
from src.services.audit import AuditContext, log_action

logger = get_logger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_CATEGORY_LENGTH = 50
MAX_RATE = Decimal("9999.99")
FALLBACK_CATEGORY = "Anders"

DEFAULT_CATEGORIES = (
    "Ontwikkeling",
    "Design",
    "Consultancy",
    "Projectmanagement",
    "Marketing",
    "Administratie",
    FALLBACK_CATEGORY,
)


@dataclass(frozen=True)
class ServiceTemplate:
    name: str
    description: str
    category: str
    default_rate: Decimal
    unit_type: UnitType


DEFAULT_SERVICES: tuple[ServiceTemplate, ...] = (
    ServiceTemplate("Webontwikkeling", "Frontend en backend webdevelopment", "Ontwikkeling", Decimal("75"), UnitType.HOURS),
    ServiceTemplate("UI/UX Design", "Gebruikersinterface en gebruikerservaring ontwerp", "Design", Decimal("65"), UnitType.HOURS),
    ServiceTemplate("Projectconsultancy", "Strategisch advies en projectbegeleiding", "Consultancy", Decimal("95"), UnitType.HOURS),
    ServiceTemplate("Projectmanagement", "Projectleiding en coördinatie", "Projectmanagement", Decimal("85"), UnitType.HOURS),
    ServiceTemplate("SEO Optimalisatie", "Zoekmachine optimalisatie diensten", "Marketing", Decimal("60"), UnitType.HOURS),
    ServiceTemplate("Administratieve ondersteuning", "Algemene administratieve werkzaamheden", "Administratie", Decimal("35"), UnitType.HOURS),
    ServiceTemplate("Reiskosten", "Kilometervergoeding voor reizen", FALLBACK_CATEGORY, Decimal("0.19"), UnitType.KILOMETERS),
    ServiceTemplate("Hosting & Domein", "Maandelijkse hosting en domeinkosten", FALLBACK_CATEGORY, Decimal("15"), UnitType.AMOUNT),
)


def validate_service(
    name: str | None,
    default_rate: Decimal | None,
    description: str | None = None,
    category: str | None = None,
) -> list[str]:
    """Return Dutch error messages; an empty list means the data is valid."""
    errors = []
    if not (name or "").strip():
        errors.append("Servicenaam is verplicht")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append("Servicenaam mag maximaal 100 karakters bevatten")
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append("Beschrijving mag maximaal 500 karakters bevatten")
    if category and len(category) > MAX_CATEGORY_LENGTH:
        errors.append("Categorie mag maximaal 50 karakters bevatten")
    if default_rate is None:
        errors.append("Standaardtarief is verplicht")
    elif default_rate < 0:
        errors.append("Standaardtarief moet 0 of hoger zijn")
    elif default_rate > MAX_RATE:
        errors.append("Standaardtarief mag maximaal €9.999,99 zijn")
    return errors


async def list_services(
    db: AsyncSession,
    user_id: int,
    *,
    search: str | None = None,
    category: str | None = None,
    active: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StandardService], int]:
    """Defaults first, then most used, then by name."""
    filters = [StandardService.user_id == user_id]
    if category and category != "all":
        filters.append(StandardService.category == category)
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(StandardService.name).like(pattern),
                func.lower(func.coalesce(StandardService.description, "")).like(pattern),
                func.lower(func.coalesce(StandardService.category, "")).like(pattern),
            )
        )
    if active is not None:
        filters.append(StandardService.is_active.is_(active))

    total = int(
        (await db.execute(select(func.count(StandardService.id)).where(*filters))).scalar()
        or 0
    )
    result = await db.execute(
        select(StandardService)
        .where(*filters)
        .order_by(
            StandardService.is_default.desc(),
            StandardService.usage_count.desc(),
            StandardService.name.asc(),
        )
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def find_active_by_name(
    db: AsyncSession, user_id: int, name: str
) -> StandardService | None:
    result = await db.execute(
        select(StandardService).where(
            StandardService.user_id == user_id,
            func.lower(StandardService.name) == name.strip().lower(),
            StandardService.is_active.is_(True),
        )
    )
    return result.scalars().first()


async def install_default_services(db: AsyncSession, user_id: int) -> list[StandardService]:
    """Add the default catalogue, skipping names the user already has."""
    created = []
    for template in DEFAULT_SERVICES:
        if await find_active_by_name(db, user_id, template.name) is not None:
            continue
        service = StandardService(
            user_id=user_id,
            name=template.name,
            description=template.description,
            category=template.category,
            default_rate=template.default_rate,
            unit_type=template.unit_type,
            is_default=True,
            is_active=True,
        )
        db.add(service)
        created.append(service)
    await db.flush()
    logger.info("default_services_installed", user_id=user_id, count=len(created))
    return created


def group_by_category(services: list[StandardService]) -> list[dict[str, Any]]:
    grouped: dict[str, list[StandardService]] = {}
    for service in services:
        grouped.setdefault(service.category or FALLBACK_CATEGORY, []).append(service)
    return [
        {
            "id": name.lower().replace(" ", "-"),
            "name": name,
            "service_ids": [s.id for s in sorted(items, key=lambda s: s.name.lower())],
        }
        for name, items in grouped.items()
    ]


def calculate_statistics(services: list[StandardService]) -> dict[str, Any]:
    active = [service for service in services if service.is_active]
    average = (
        sum((Decimal(s.default_rate) for s in active), Decimal("0")) / len(active)
        if active
        else Decimal("0")
    )
    category_counts: dict[str, int] = {}
    unit_type_counts: dict[str, int] = {}
    for service in services:
        category = service.category or FALLBACK_CATEGORY
        category_counts[category] = category_counts.get(category, 0) + 1
        unit_type_counts[service.unit_type.value] = (
            unit_type_counts.get(service.unit_type.value, 0) + 1
        )
    return {
        "total_services": len(services),
        "active_services": len(active),
        "total_usage": sum(service.usage_count or 0 for service in services),
        "average_rate": float(round(average, 2)),
        "category_counts": category_counts,
        "unit_type_counts": unit_type_counts,
    }


class ServiceNotFoundError(LookupError):
    pass


class DuplicateServiceError(ValueError):
    pass


class ServiceValidationError(ValueError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors))


async def get_service(db: AsyncSession, service_id: int, user_id: int) -> StandardService:
    """A service owned by ``user_id``; other users' services look missing."""
    service = await db.get(StandardService, service_id)
    if service is None or service.user_id != user_id:
        raise ServiceNotFoundError("Service not found")
    return service


def _snapshot(service: StandardService) -> dict[str, Any]:
    return {
        "name": service.name,
        "description": service.description,
        "category": service.category,
        "default_rate": str(service.default_rate),
        "unit_type": service.unit_type.value,
        "is_active": service.is_active,
    }


async def create_service(
    db: AsyncSession,
    user_id: int,
    *,
    name: str,
    default_rate: Decimal,
    description: str | None = None,
    category: str | None = None,
    unit_type: UnitType = UnitType.HOURS,
    context: AuditContext | None = None,
) -> StandardService:
    """Add a service to the user's catalogue.

    Raises:
        ServiceValidationError: If a field is missing or out of range.
        DuplicateServiceError: If an active service already has the name.
    """
    errors = validate_service(name, default_rate, description, category)
    if errors:
        raise ServiceValidationError(errors)
    if await find_active_by_name(db, user_id, name) is not None:
        raise DuplicateServiceError("A service with this name already exists")

    service = StandardService(
        user_id=user_id,
        name=name.strip(),
        description=(description or "").strip() or None,
        category=(category or "").strip() or FALLBACK_CATEGORY,
        default_rate=default_rate,
        unit_type=unit_type,
        is_active=True,
        is_default=False,
        usage_count=0,
    )
    db.add(service)
    await db.flush()
    await log_action(
        db,
        AuditAction.CREATE,
        "StandardService",
        service.id,
        context=context,
        new_values=_snapshot(service),
    )
    logger.info("standard_service_created", service_id=service.id, user_id=user_id)
    return service


async def update_service(
    db: AsyncSession,
    service: StandardService,
    updates: dict[str, Any],
    context: AuditContext | None = None,
) -> StandardService:
    """Apply partial changes; unchanged fields keep their values."""
    name = updates.get("name", service.name)
    default_rate = updates.get("default_rate", service.default_rate)
    errors = validate_service(
        name,
        default_rate,
        updates.get("description", service.description),
        updates.get("category", service.category),
    )
    if errors:
        raise ServiceValidationError(errors)
    if name.strip().lower() != service.name.lower():
        existing = await find_active_by_name(db, service.user_id, name)
        if existing is not None and existing.id != service.id:
            raise DuplicateServiceError("A service with this name already exists")

    old_values = _snapshot(service)
    for field_name in ("name", "description", "category", "default_rate", "unit_type", "is_active"):
        if field_name in updates:
            value = updates[field_name]
            if isinstance(value, str):
                value = value.strip()
            setattr(service, field_name, value)
    await db.flush()
    await log_action(
        db,
        AuditAction.UPDATE,
        "StandardService",
        service.id,
        context=context,
        old_values=old_values,
        new_values=_snapshot(service),
    )
    return service


async def deactivate_service(
    db: AsyncSession, service: StandardService, context: AuditContext | None = None
) -> StandardService:
    """Soft delete: invoices that used the service keep their lines."""
    service.is_active = False
    await db.flush()
    await log_action(
        db,
        AuditAction.DELETE,
        "StandardService",
        service.id,
        context=context,
        old_values={"is_active": True},
        new_values={"is_active": False},
    )
    logger.info("standard_service_deactivated", service_id=service.id)
    return service


async def record_usage(db: AsyncSession, service: StandardService) -> StandardService:
    service.usage_count = (service.usage_count or 0) + 1
    await db.flush()
    return service
