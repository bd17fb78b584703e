"""
Pytest configuration and fixtures for backend tests.

Provides common test fixtures for the database engine, sessions, the audit
log writer and an async HTTP client.
"""
import pytest
import pytest_asyncio
from typing import AsyncGenerator

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

import lexaudit.models  # noqa: F401
from lexaudit.main import app
from lexaudit.core.database import get_db, Base
from lexaudit.audit.audit_logger import get_audit_writer
from lexaudit.audit.session_hooks import register_audit_hooks
from lexaudit.audit.writer import AuditLogWriter
from lexaudit.models.audit_log import AuditEventType, AuditEventCategory


# File-backed SQLite so that the writer's sessions and the test's session
# see the same database (each NullPool connection to :memory: is a new DB).
@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'audit_test.db'}",
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    register_audit_hooks(factory)
    return factory


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def audit_writer(session_factory) -> AuditLogWriter:
    return AuditLogWriter(session_factory)


@pytest.fixture
def make_event():
    """Build valid event attributes; keyword arguments override the defaults."""
    def _make_event(**overrides) -> dict:
        event = {
            "event_type": AuditEventType.LOGIN,
            "event_category": AuditEventCategory.AUTHENTICATION,
            "user_id": "64b7f0c2a1e4d5f6a7b8c9d0",
            "username": "j.devries",
            "user_role": "attorney",
            "action": "login",
            "ip_address": "10.0.0.1",
        }
        event.update(overrides)
        return event
    return _make_event


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory,
    audit_writer: AuditLogWriter,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and writer overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_writer] = lambda: audit_writer

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
