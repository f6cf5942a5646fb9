"""
SuperClip Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment is set before any `app` import so the settings singleton,
       the engine and the service singletons are built with test values.

Fixture Hierarchy (all function-scoped):
    ├── mock_db_session:      AsyncMock standing in for AsyncSession
    ├── usage_store:          fresh InMemoryUsageStore
    ├── entitlements:         EntitlementService over that store
    ├── tokens:               TokenService with the test secret
    ├── auth_headers:         factory → {"Authorization": "Bearer ..."} for a user id
    ├── test_app:             fresh app with DB session and entitlements overridden
    └── test_client:          HTTPX AsyncClient bound to test_app
"""

import os

# Override settings BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["JWT_EXPIRATION"] = "1d"
os.environ["BCRYPT_ROUNDS"] = "4"  # fastest allowed cost
os.environ["USAGE_STORE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["LOG_LEVEL"] = "WARNING"

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.database import get_db_session  # noqa: E402
from app.dependencies import get_entitlement_service  # noqa: E402
from app.services.subscription_service import (  # noqa: E402
    DigitSubscriptionResolver,
    EntitlementService,
)
from app.services.token_service import TokenPayload, TokenService  # noqa: E402
from app.services.usage_store import InMemoryUsageStore  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET"]


@pytest.fixture
def mock_db_session():
    """
    Mock async database session.

    Usage:
        result = MagicMock()
        result.scalar_one_or_none.return_value = user
        mock_db_session.execute.return_value = result
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def entitlements(usage_store):
    return EntitlementService(DigitSubscriptionResolver(), usage_store)


@pytest.fixture
def tokens():
    return TokenService(secret=TEST_SECRET)


@pytest.fixture
def auth_headers(tokens):
    """Build Authorization headers for an arbitrary user id."""

    def _make(user_id: str, email: str = "user@example.com") -> dict:
        token = tokens.issue(TokenPayload(user_id=user_id, email=email))
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def test_app(mock_db_session, entitlements):
    """
    A fresh application per test (fresh rate limiter state), with the
    database session and the entitlement engine replaced.
    """
    from app.main import create_app

    app = create_app()

    async def _db_override():
        yield mock_db_session

    app.dependency_overrides[get_db_session] = _db_override
    app.dependency_overrides[get_entitlement_service] = lambda: entitlements
    return app


@pytest_asyncio.fixture
async def test_client(test_app):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
