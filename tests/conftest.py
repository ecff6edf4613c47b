"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and all outbound HTTP.
"""
import os

# Settings require a database URL at import time (vaisync.main builds the app)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

import vaisync.models  # noqa: F401  registers tables on Base.metadata
from vaisync.config import get_settings
from vaisync.database import Base


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
def sqlite_engine():
    """Single shared connection so every session sees the same in-memory DB."""
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
async def db(sqlite_engine):
    """In-memory SQLite database for tests."""
    async with sqlite_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await sqlite_engine.dispose()


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are lru_cached; rebuild them around every test so env patches apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def configure(monkeypatch):
    """Set env-driven settings for one test: configure(vairify_webhook_secret="s3cret")."""
    def _configure(**values):
        for key, value in values.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
        return get_settings()
    return _configure


@pytest.fixture(autouse=True)
def no_redis():
    """Redis is never available in tests; alerting falls back to in-memory cooldowns."""
    from vaisync.utils import alerting

    alerting._local_cooldowns.clear()
    with patch(
        "vaisync.utils.redis_client.get_redis",
        new_callable=AsyncMock,
        side_effect=ConnectionError("redis unavailable in tests"),
    ) as mock:
        yield mock
    alerting._local_cooldowns.clear()


@pytest.fixture
def mock_redis():
    """Working async Redis double for tests that need one."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.ping = AsyncMock(return_value=True)
    with patch("vaisync.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def sample_webhook():
    """A well-formed Vairify status callback body."""
    return {
        "event_type": "user.status_changed",
        "user_id": "usr_8f2c",
        "vai_number": "VAI-1024",
        "timestamp": "2026-10-17T12:00:00Z",
        "data": {"status": "verified", "reason": "document check passed"},
    }


class ApiHarness:
    """TestClient plus a way to run DB checks on the client's event loop."""

    def __init__(self, client, session_factory):
        self.client = client
        self.session_factory = session_factory

    def run(self, fn, *args):
        """Run ``await fn(session, *args)`` in the app's loop and return the result."""
        return self.client.portal.call(self._with_session, fn, *args)

    async def _with_session(self, fn, *args):
        async with self.session_factory() as session:
            return await fn(session, *args)


@pytest.fixture
def api(sqlite_engine):
    """Full app (middleware, handlers, lifespan) on an in-memory database."""
    from fastapi.testclient import TestClient
    from vaisync.database import get_db
    from vaisync.main import create_app

    with patch("vaisync.main.configure_structured_logging"):
        app = create_app()
    session_factory = async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _create_tables():
        async with sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.dependency_overrides[get_db] = _get_test_db
    with TestClient(app, raise_server_exceptions=False) as client:
        client.portal.call(_create_tables)
        yield ApiHarness(client, session_factory)
        client.portal.call(sqlite_engine.dispose)
