"""Pytest fixtures for integration tests.

This conftest.py provides integration-specific fixtures:
- A fresh in-memory SQLite database per test (schema from Base.metadata)
- A session factory bound to it, injected into the services under test
- A ``seed`` helper for catalog rows, collections and rules

The root tests/conftest.py handles Python path setup and basic environment.
"""
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from collection_engine.config import RegenerationSettings
from collection_engine.db.base import Base, engine_options
from tests.integration.helpers import Seeder

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
    """In-memory database with foreign keys enforced (cascades on delete)."""
    test_engine = create_async_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def regen_settings():
    """Short lock TTL and fast polling for tests."""
    return RegenerationSettings(
        lock_ttl_seconds=60,
        lock_wait_seconds=0.0,
        lock_poll_interval_seconds=0.01,
        page_size_default=50,
        page_size_max=100,
    )


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)
