"""Legal documents: drafting, versioning and publication.

Documents linked to a client belong to that client's owner. Documents
without a client are shared templates: everyone can read them and only
their author can change them. ``owner_id=None`` lifts both restrictions
and is used for administrators.
"""

from decimal import Decimal, InvalidOperation

from sqlalchemy import ColumnElement, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.client import Client
from src.models.document import DocumentStatus, LegalDocument, LegalDocumentType
from src.services.audit import AuditContext, log_action

logger = get_logger(__name__)


class DocumentNotFoundError(LookupError):
    pass


class DocumentStateError(ValueError):
    """The document's status does not allow the requested change."""


class DocumentAccessError(PermissionError):
    """The caller may read the document but not change it."""


def owned_client_ids(owner_id: int):
    return select(Client.id).where(Client.user_id == owner_id)


def visible_to(owner_id: int | None) -> ColumnElement[bool]:
    if owner_id is None:
        return true()
    return or_(
        LegalDocument.client_id.is_(None),
        LegalDocument.client_id.in_(owned_client_ids(owner_id)),
    )


def ensure_editable(document: LegalDocument, owner_id: int | None) -> None:
    """Raises DocumentAccessError for a shared template the caller did not write."""
    if owner_id is None or document.client_id is not None:
        return
    if document.created_by != owner_id:
        raise DocumentAccessError("Only the author can change a shared document")


def next_version(version: str) -> str:
    """Bump a ``major.minor`` version by one tenth (``1.9`` becomes ``2.0``)."""
    try:
        current = Decimal(version)
    except InvalidOperation:
        current = Decimal("1.0")
    return str((current + Decimal("0.1")).quantize(Decimal("0.1")))


async def get_document(
    db: AsyncSession, document_id: int, owner_id: int | None = None
) -> LegalDocument:
    result = await db.execute(
        select(LegalDocument).where(LegalDocument.id == document_id, visible_to(owner_id))
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError("Document not found")
    return document


async def list_documents(
    db: AsyncSession,
    *,
    document_type: LegalDocumentType | None = None,
    status: DocumentStatus | None = None,
    language: str | None = None,
    owner_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[LegalDocument]:
    stmt = select(LegalDocument).where(visible_to(owner_id))
    if document_type is not None:
        stmt = stmt.where(LegalDocument.document_type == document_type)
    if status is not None:
        stmt = stmt.where(LegalDocument.status == status)
    if language:
        stmt = stmt.where(LegalDocument.language == language)
    stmt = stmt.order_by(LegalDocument.created_at.desc(), LegalDocument.id.desc())
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def create_document(
    db: AsyncSession,
    *,
    document_type: LegalDocumentType,
    title: str,
    content: str,
    description: str | None = None,
    language: str = "nl",
    client_id: int | None = None,
    context: AuditContext | None = None,
) -> LegalDocument:
    context = context or AuditContext()
    document = LegalDocument(
        document_type=document_type,
        title=title.strip(),
        description=description,
        content=content,
        language=language,
        status=DocumentStatus.DRAFT,
        client_id=client_id,
        created_by=context.user_id,
    )
    db.add(document)
    await db.flush()
    await log_action(
        db,
        AuditAction.CREATE,
        "LegalDocument",
        document.id,
        context=context,
        new_values={
            "document_type": document_type.value,
            "title": document.title,
            "version": document.version,
        },
    )
    logger.info("legal_document_created", document_id=document.id)
    return document


async def update_document(
    db: AsyncSession,
    document: LegalDocument,
    updates: dict,
    context: AuditContext | None = None,
) -> LegalDocument:
    """Edit a draft. Published text is changed through a new version.

    Raises:
        DocumentStateError: If the document is no longer a draft.
    """
    if document.status != DocumentStatus.DRAFT:
        raise DocumentStateError("Only draft documents can be edited")

    old_values = {}
    for name in ("title", "description", "content", "language"):
        if name in updates and updates[name] is not None:
            old_values[name] = getattr(document, name)
            setattr(document, name, updates[name])
    await db.flush()
    await log_action(
        db,
        AuditAction.UPDATE,
        "LegalDocument",
        document.id,
        context=context,
        old_values={key: value for key, value in old_values.items() if key != "content"},
        new_values={key: updates[key] for key in old_values if key != "content"},
        note="content changed" if "content" in old_values else None,
    )
    return document


async def publish_document(
    db: AsyncSession,
    document: LegalDocument,
    context: AuditContext | None = None,
) -> LegalDocument:
    """Publish a draft; a published parent version is archived.

    Raises:
        DocumentStateError: If the document is not a draft.
    """
    if document.status != DocumentStatus.DRAFT:
        raise DocumentStateError("Only draft documents can be published")

    context = context or AuditContext()
    document.status = DocumentStatus.PUBLISHED
    document.published_at = utcnow()
    document.published_by = context.user_id

    if document.parent_id is not None:
        parent = await db.get(LegalDocument, document.parent_id)
        if parent is not None and parent.status == DocumentStatus.PUBLISHED:
            parent.status = DocumentStatus.ARCHIVED

    await db.flush()
    await log_action(
        db,
        AuditAction.UPDATE,
        "LegalDocument",
        document.id,
        context=context,
        old_values={"status": DocumentStatus.DRAFT.value},
        new_values={"status": DocumentStatus.PUBLISHED.value, "version": document.version},
    )
    logger.info("legal_document_published", document_id=document.id, version=document.version)
    return document


async def create_version(
    db: AsyncSession,
    parent: LegalDocument,
    content: str,
    change_reason: str,
    context: AuditContext | None = None,
) -> LegalDocument:
    """Start a new draft version of ``parent`` with new content."""
    context = context or AuditContext()
    version = LegalDocument(
        document_type=parent.document_type,
        title=parent.title,
        description=parent.description,
        content=content,
        version=next_version(parent.version),
        language=parent.language,
        status=DocumentStatus.DRAFT,
        parent_id=parent.id,
        change_reason=change_reason,
        client_id=parent.client_id,
        created_by=context.user_id,
    )
    db.add(version)
    await db.flush()
    await log_action(
        db,
        AuditAction.CREATE,
        "LegalDocument",
        version.id,
        context=context,
        new_values={
            "parent_id": parent.id,
            "version": version.version,
            "change_reason": change_reason,
        },
    )
    return version


async def get_version_history(
    db: AsyncSession, document: LegalDocument
) -> list[LegalDocument]:
    """The document, its parent and the other versions derived from either."""
    related = [LegalDocument.id == document.id, LegalDocument.parent_id == document.id]
    if document.parent_id is not None:
        related.append(LegalDocument.id == document.parent_id)
        related.append(LegalDocument.parent_id == document.parent_id)
    result = await db.execute(
        select(LegalDocument)
        .where(or_(*related))
        .order_by(LegalDocument.created_at.desc(), LegalDocument.id.desc())
    )
    return list(result.scalars().all())
