"""
Irshad Backend: Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the test suite.
How:   Services are tested against a mocked AsyncSession (the models use
       PostgreSQL JSONB and UUID columns, so there is no in-memory DB);
       routes are tested through httpx's ASGITransport with the service
       singletons patched.

Fixtures (function-scoped):
    ├── mock_db_session: AsyncMock session; begin_nested() is a no-op
    │                    async context manager so `atomic(db)` works
    ├── make_result:     builds the object returned by db.execute()
    └── test_client:     HTTPX AsyncClient bound to the FastAPI app
"""

import os

# Must be set before anything imports app.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STRIPE_MAHAD_SECRET_KEY"] = "sk_test_mahad"
os.environ["STRIPE_MAHAD_WEBHOOK_SECRET"] = "whsec_test_mahad"
os.environ["STRIPE_DUGSI_SECRET_KEY"] = "sk_test_dugsi"
os.environ["STRIPE_DUGSI_WEBHOOK_SECRET"] = "whsec_test_dugsi"
os.environ["STRIPE_MAHAD_PRODUCT_ID"] = "prod_test_mahad"
os.environ["STRIPE_DUGSI_PRODUCT_ID"] = "prod_test_dugsi"
os.environ["TIMEZONE"] = "America/Chicago"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Any, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import app.models  # noqa: F401  (every mapper registered before models are built in tests)


class _NoopTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def mock_db_session():
    """
    A MagicMock standing in for AsyncSession.

    Usage:
        async def test_something(mock_db_session, make_result):
            mock_db_session.execute.return_value = make_result(scalars=[row])
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.begin_nested = MagicMock(side_effect=lambda: _NoopTransaction())
    return session


@pytest.fixture
def make_result():
    """Factory for a db.execute() result with the accessors services use."""

    def _make(
        scalars: Optional[Iterable[Any]] = None,
        rows: Optional[Iterable[Any]] = None,
        scalar: Any = None,
    ) -> MagicMock:
        scalars = list(scalars or [])
        result = MagicMock()
        result.scalars.return_value.all.return_value = scalars
        result.scalars.return_value.first.return_value = scalars[0] if scalars else None
        result.scalars.return_value.unique.return_value.all.return_value = scalars
        result.scalar_one_or_none.return_value = scalars[0] if scalars else None
        result.scalar.return_value = scalar
        result.all.return_value = list(rows or [])
        result.first.return_value = list(rows)[0] if rows else None
        return result

    return _make


@pytest_asyncio.fixture
async def test_client(mock_db_session):
    """
    Async HTTP client talking to the app in-process.

    get_db_session is overridden to yield `mock_db_session`, so route tests
    never open a database connection.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
    """
    from app.database import get_db_session
    from app.main import app

    async def _session():
        yield mock_db_session

    app.dependency_overrides[get_db_session] = _session
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
