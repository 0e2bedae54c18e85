"""API module exports."""

from src.api.admin import router as admin_router
from src.api.audit import router as audit_router
from src.api.auth import router as auth_router
from src.api.clients import router as clients_router
from src.api.dashboard import router as dashboard_router
from src.api.deps import get_db, get_redis
from src.api.documents import router as documents_router
from src.api.health import router as health_router
from src.api.invoices import router as invoices_router
from src.api.signatures import router as signatures_router
from src.api.standard_services import router as standard_services_router
from src.api.validation import router as validation_router
from src.api.workflow import router as workflow_router

__all__ = [
    "admin_router",
    "audit_router",
    "auth_router",
    "clients_router",
    "dashboard_router",
    "documents_router",
    "get_db",
    "get_redis",
    "health_router",
    "invoices_router",
    "signatures_router",
    "standard_services_router",
    "validation_router",
    "workflow_router",
]
