"""Pytest configuration and shared fixtures for tests.

The app runs against in-memory sqlite (aiosqlite), an in-process Redis
stand-in and an httpx mock transport for the KvK and BTW registries.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("BTW_MIN_REQUEST_INTERVAL_SECONDS", "0")
os.environ.setdefault("KVK_BATCH_DELAY_SECONDS", "0")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ADMIN_EMAILS", "admin@zzptrust.nl")

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.main import app  # noqa: E402
from src.models import Base  # noqa: E402
from tests.helpers import (  # noqa: E402
    ADMIN_EMAIL,
    OTHER_EMAIL,
    USER_EMAIL,
    FakeRedis,
    RegistryStub,
    register,
)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def registry() -> RegistryStub:
    return RegistryStub()


@pytest_asyncio.fixture
async def http_client(registry: RegistryStub) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Shared outbound client whose requests are answered by ``registry``."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(registry)) as client:
        yield client


@pytest_asyncio.fixture
async def session_factory(
    fake_redis: FakeRedis,
    http_client: httpx.AsyncClient,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a sqlite-backed session factory and install it on the app."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    app.state.async_session = factory
    app.state.redis = fake_redis
    app.state.http_client = http_client
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[Callable[[], Awaitable[AsyncClient]], None]:
    """Factory for API clients; each keeps its own session cookie."""
    opened: list[AsyncClient] = []

    async def _make() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        opened.append(client)
        return client

    yield _make
    for client in opened:
        await client.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(make_client: Callable[[], Awaitable[AsyncClient]]) -> AsyncClient:
    """Anonymous API client."""
    return await make_client()


@pytest_asyncio.fixture
async def user_client(make_client: Callable[[], Awaitable[AsyncClient]]) -> AsyncClient:
    """Client signed in as a freelancer with the USER role."""
    client = await make_client()
    await register(client, USER_EMAIL, name="Jan Jansen")
    return client


@pytest_asyncio.fixture
async def other_client(make_client: Callable[[], Awaitable[AsyncClient]]) -> AsyncClient:
    """A second freelancer, for ownership checks."""
    client = await make_client()
    await register(client, OTHER_EMAIL, name="Petra Visser")
    return client


@pytest_asyncio.fixture
async def admin_client(make_client: Callable[[], Awaitable[AsyncClient]]) -> AsyncClient:
    """Client signed in as SUPER_ADMIN (address listed in ADMIN_EMAILS)."""
    client = await make_client()
    await register(client, ADMIN_EMAIL, name="Beheer")
    return client
