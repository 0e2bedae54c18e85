"""Legal document endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.clients import load_client_for
from src.api.deps import (
    Pagination,
    get_audit_context,
    get_db,
    get_is_admin,
    get_pagination,
    require_permissions,
)
from src.models.document import DocumentStatus, LegalDocument, LegalDocumentType
from src.models.user import User
from src.services.audit import AuditContext
from src.services.documents import (
    create_document,
    create_version,
    ensure_editable,
    get_document,
    get_version_history,
    list_documents,
    publish_document,
    update_document,
)
from src.services.permissions import PERMISSIONS as P

router = APIRouter(prefix="/api/legal-documents", tags=["legal-documents"])


class DocumentCreateRequest(BaseModel):
    document_type: LegalDocumentType
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    description: str | None = Field(default=None, max_length=2000)
    language: str = Field(default="nl", min_length=2, max_length=5)
    client_id: int | None = Field(default=None, gt=0)


class DocumentUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, max_length=2000)
    language: str | None = Field(default=None, min_length=2, max_length=5)


class VersionCreateRequest(BaseModel):
    content: str = Field(min_length=1)
    change_reason: str = Field(min_length=1, max_length=2000)


class DocumentResponse(BaseModel):
    id: int
    document_type: str
    title: str
    description: str | None
    content: str
    version: str
    language: str
    status: str
    parent_id: int | None
    change_reason: str | None
    client_id: int | None
    created_by: int | None
    published_at: datetime | None
    published_by: int | None
    created_at: datetime
    updated_at: datetime


def _to_document_response(document: LegalDocument) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        document_type=document.document_type.value,
        title=document.title,
        description=document.description,
        content=document.content,
        version=document.version,
        language=document.language,
        status=document.status.value,
        parent_id=document.parent_id,
        change_reason=document.change_reason,
        client_id=document.client_id,
        created_by=document.created_by,
        published_at=document.published_at,
        published_by=document.published_by,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def post_document(
    payload: DocumentCreateRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_CREATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Create a draft, either shared or for one of the caller's clients."""
    if payload.client_id is not None:
        await load_client_for(db, payload.client_id, user, admin)
    document = await create_document(
        db,
        document_type=payload.document_type,
        title=payload.title,
        content=payload.content,
        description=payload.description,
        language=payload.language,
        client_id=payload.client_id,
        context=context,
    )
    return _to_document_response(document)


@router.get("", response_model=list[DocumentResponse])
async def get_documents(
    document_type: LegalDocumentType | None = Query(default=None, alias="type"),
    document_status: DocumentStatus | None = Query(default=None, alias="status"),
    language: str | None = Query(default=None, max_length=5),
    page: Pagination = Depends(get_pagination),
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentResponse]:
    documents = await list_documents(
        db,
        document_type=document_type,
        status=document_status,
        language=language,
        owner_id=None if admin else user.id,
        limit=page.limit,
        offset=page.offset,
    )
    return [_to_document_response(document) for document in documents]


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document_detail(
    document_id: int,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    document = await get_document(db, document_id, None if admin else user.id)
    return _to_document_response(document)


async def _editable_document(
    db: AsyncSession, document_id: int, user: User, admin: bool
) -> LegalDocument:
    owner_id = None if admin else user.id
    document = await get_document(db, document_id, owner_id)
    ensure_editable(document, owner_id)
    return document


@router.patch("/{document_id}", response_model=DocumentResponse)
async def patch_document(
    document_id: int,
    payload: DocumentUpdateRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Edit a draft; published documents answer 409."""
    document = await _editable_document(db, document_id, user, admin)
    updates = payload.model_dump(exclude_unset=True)
    await update_document(db, document, updates, context)
    return _to_document_response(document)


@router.post("/{document_id}/publish", response_model=DocumentResponse)
async def post_publish(
    document_id: int,
    user: User = Depends(require_permissions(P.DOCUMENT_UPDATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    document = await _editable_document(db, document_id, user, admin)
    await publish_document(db, document, context)
    return _to_document_response(document)


@router.post(
    "/{document_id}/versions",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_version(
    document_id: int,
    payload: VersionCreateRequest,
    user: User = Depends(require_permissions(P.DOCUMENT_CREATE)),
    admin: bool = Depends(get_is_admin),
    context: AuditContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Start a new draft version; it replaces the parent once published."""
    parent = await _editable_document(db, document_id, user, admin)
    version = await create_version(db, parent, payload.content, payload.change_reason, context)
    return _to_document_response(version)


@router.get("/{document_id}/versions", response_model=list[DocumentResponse])
async def get_versions(
    document_id: int,
    user: User = Depends(require_permissions(P.DOCUMENT_READ)),
    admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentResponse]:
    document = await get_document(db, document_id, None if admin else user.id)
    return [_to_document_response(item) for item in await get_version_history(db, document)]
