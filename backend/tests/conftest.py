"""
Memora Backend — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets a fresh in-memory SQLite database (aiosqlite, one
       shared connection through StaticPool) with the full schema created
       from Base.metadata. API tests run the real app through httpx's
       ASGITransport with get_db_session pointed at that database.

Fixture Hierarchy:
    db_engine ─┬─ session_factory ─┬─ db_session        (service tests)
               │                   └─ client            (API tests)
               └─ (disposed after each test)
    mock_db_session                                      (pure unit tests)
"""

import os
import tempfile

# Settings are read at import time, so the environment is set before any
# memora import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="memora_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack"
os.environ["FLUTTERWAVE_SECRET_HASH"] = "flw_test_hash"
os.environ["PLAN_TIERS"] = '{"PLN_pro_monthly": "pro", "price_studio": "studio"}'
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["RETRY_MAX_ATTEMPTS"] = "2"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

import memora.models  # noqa: E402,F401
from memora.database import Base, get_db_session  # noqa: E402
from memora.services.cache_service import cache  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession for tests that never touch SQL.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = phase
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def client(session_factory):
    """
    HTTPX AsyncClient bound to a fresh app instance (fresh rate limiter).

    Usage:
        async def test_health(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    from memora.main import create_app

    app = create_app()

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def owner_token(client):
    """Registers a photographer through the API and returns their access token."""
    response = await client.post(
        "/api/users", json={"email": "studio@example.com", "name": "Studio"}
    )
    assert response.status_code == 201
    return response.json()["api_token"]


@pytest.fixture
def owner_headers(owner_token):
    return {"Authorization": f"Bearer {owner_token}"}
