"""FastAPI application entry point with lifespan management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from starlette.middleware.sessions import SessionMiddleware
from statemachine.exceptions import TransitionNotAllowed

from src.api import (
    admin_router,
    audit_router,
    auth_router,
    clients_router,
    dashboard_router,
    documents_router,
    health_router,
    invoices_router,
    signatures_router,
    standard_services_router,
    validation_router,
    workflow_router,
)
from src.api.limiter import limiter
from src.api.middleware import RequestContextMiddleware
from src.core.config import settings
from src.core.database import create_engine, create_session_factory
from src.core.logging import configure_logging, get_logger
from src.core.redis import create_redis_pool
from src.core.sentry import init_sentry
from src.services.documents import (
    DocumentAccessError,
    DocumentNotFoundError,
    DocumentStateError,
)
from src.services.invoices import InvoiceNotFoundError, InvoiceNumberConflictError
from src.services.signatures import SignatureNotFoundError, SignatureStateError
from src.services.workflow import ClientNotFoundError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle resources.

    Startup:
        - Configure structured logging
        - Initialize Sentry error tracking
        - Create database engine and session factory
        - Establish Redis connection pool
        - Open the shared HTTP client used for registry lookups

    Shutdown releases them in reverse order.
    """
    configure_logging()
    logger.info("Starting application", environment=settings.environment)

    init_sentry()

    app.state.db_engine = create_engine()
    app.state.async_session = create_session_factory(app.state.db_engine)
    logger.info("Database engine created")

    app.state.redis = await create_redis_pool()
    logger.info("Redis pool created")

    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(10.0, connect=5.0),
        headers={"User-Agent": "ZZP-Trust/1.0"},
    )

    yield

    logger.info("Shutting down application")

    await app.state.http_client.aclose()

    await app.state.redis.aclose()
    logger.info("Redis pool closed")

    await app.state.db_engine.dispose()
    logger.info("Database engine disposed")


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
    return _error(404, str(exc) or "Not found")


async def forbidden_handler(request: Request, exc: PermissionError) -> JSONResponse:
    return _error(403, str(exc))


async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(409, str(exc))


async def transition_handler(request: Request, exc: TransitionNotAllowed) -> JSONResponse:
    logger.info("transition_refused", path=request.url.path, error=str(exc))
    return _error(409, f"Status change not allowed: {exc}")


async def stale_data_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    return _error(409, "Record was modified by another request")


async def integrity_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("integrity_conflict", path=request.url.path, error=str(exc.orig))
    return _error(409, "Record conflicts with an existing one")


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(400, str(exc))


app = FastAPI(
    title="ZZP Trust",
    description="Client onboarding, invoicing and compliance for Dutch freelancers",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
for error in (
    ClientNotFoundError,
    DocumentNotFoundError,
    InvoiceNotFoundError,
    SignatureNotFoundError,
):
    app.add_exception_handler(error, not_found_handler)
app.add_exception_handler(DocumentAccessError, forbidden_handler)
app.add_exception_handler(DocumentStateError, conflict_handler)
app.add_exception_handler(SignatureStateError, conflict_handler)
app.add_exception_handler(TransitionNotAllowed, transition_handler)
app.add_exception_handler(InvoiceNumberConflictError, conflict_handler)
app.add_exception_handler(StaleDataError, stale_data_handler)
app.add_exception_handler(IntegrityError, integrity_handler)
app.add_exception_handler(ValueError, value_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    max_age=settings.session_max_age_seconds,
    same_site="lax",
    https_only=settings.environment == "production",
)
app.add_middleware(RequestContextMiddleware)

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(clients_router)
app.include_router(workflow_router)
app.include_router(admin_router)
app.include_router(validation_router)
app.include_router(invoices_router)
app.include_router(dashboard_router)
app.include_router(standard_services_router)
app.include_router(documents_router)
app.include_router(signatures_router)
app.include_router(audit_router)
