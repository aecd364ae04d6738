"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test gets its own transaction that rolls back after the test.
- The default database is in-memory SQLite (aiosqlite); set
  ``TEST_DATABASE_URL`` to run against PostgreSQL instead.
"""

import os
from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from vistream.billing.rate_limit import MemoryRateLimiter, get_rate_limiter
from vistream.database import Base, get_db
from vistream.main import app
from vistream.models.plan import Plan
from vistream.models.user import User

from tests.factories import auth_headers_for, create_plan, create_user

# ---------------------------------------------------------------------------
# Test database engine
# ---------------------------------------------------------------------------

_test_db_url = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


def _make_engine():
    if _test_db_url.startswith("sqlite"):
        return create_async_engine(
            _test_db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(_test_db_url, echo=False, pool_pre_ping=True)


@pytest_asyncio.fixture
async def test_engine():
    """Fresh engine and schema per test (in-memory SQLite is per connection)."""
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Per-test: transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(bind=connection, expire_on_commit=False)

        try:
            yield session
        finally:
            await session.close()
            if transaction.is_active:
                await transaction.rollback()


@pytest_asyncio.fixture
async def rate_limiter() -> MemoryRateLimiter:
    return MemoryRateLimiter(max_requests=100, window_seconds=60)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, rate_limiter: MemoryRateLimiter) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await create_user(db_session)


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    return auth_headers_for(test_user)


@pytest_asyncio.fixture
async def pro_plan(db_session: AsyncSession) -> Plan:
    return await create_plan(db_session, "Pro", "29€", "1 mois")


@pytest_asyncio.fixture
async def yearly_plan(db_session: AsyncSession) -> Plan:
    return await create_plan(db_session, "Pro Annuel", "290€", "12 mois", price_cents=29000)
