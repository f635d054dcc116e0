"""
Centralized Test Configuration.
"""

import pytest
from decimal import Decimal
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from ledger_backend.app.db.session import Base
from ledger_backend.app.services.entity_locking import EntityLockRegistry
from ledger_backend.app.services.ledger_engine import LedgerEngine
from ledger_backend.app.core.reliability import LockRetryPolicy
import ledger_backend.app.models.registry  # noqa: F401

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Event handler to enable foreign keys for SQLite
@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
async def db_engine():
    """Fresh in-memory database per test.

    Every session shares the single StaticPool connection, so returning it to
    the pool must not roll back work another session still has in flight.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def lock_registry():
    return EntityLockRegistry(timeout_seconds=2.0)


@pytest.fixture
def ledger(session_factory, lock_registry):
    """Ledger engine bound to the test database."""
    return LedgerEngine(
        session_factory=session_factory,
        lock_registry=lock_registry,
        retry_policy=LockRetryPolicy(attempts=1, backoff_seconds=0),
    )


# Shared session for fixture data creation and assertions
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def variant(ledger):
    """Stock unit with 10 units on hand."""
    return await ledger.register_stock_unit(
        sku="SKU-001", name="Test Variant", opening_stock=10, cost_price=Decimal("25.00")
    )


@pytest.fixture
async def vendor(ledger):
    """Vendor account with a zero balance."""
    return await ledger.register_account(name="Test Vendor")


@pytest.fixture
def reload(session_factory):
    """Read a row back through a fresh session (no stale identity map)."""
    async def _reload(model, entity_id):
        async with session_factory() as session:
            return await session.get(model, entity_id)
    return _reload


@pytest.fixture
def fetch_entries(session_factory):
    """Ledger entries of one entity, in ledger order."""
    async def _fetch(binding, entity_id):
        async with session_factory() as session:
            result = await session.execute(binding.ordered_entries(entity_id))
            return list(result.scalars().all())
    return _fetch
