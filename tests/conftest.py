"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import asyncio
import os
import typing as typ

# Actors are declared at import time and need a broker first.
os.environ.setdefault("HUBSYNC_ALLOW_STUB_BROKER", "1")

import dramatiq
import pytest
import pytest_asyncio
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from hubsync.bootstrap import init_bootstrap_storage
from hubsync.bronze import init_bronze_storage
from hubsync.silver import init_silver_storage
from tests.helpers.fakes import RecordingScheduler

if typ.TYPE_CHECKING:
    from pathlib import Path

_STUB_BROKER = StubBroker()
_STUB_BROKER.emit_after("process_boot")
dramatiq.set_broker(_STUB_BROKER)


async def _init_all_storage(engine: AsyncEngine) -> None:
    """Create webhook, cache and sync job tables."""
    await init_bronze_storage(engine)
    await init_silver_storage(engine)
    await init_bootstrap_storage(engine)


def _sqlite_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'hubsync_test.db'}"


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Return a SQLite URL in the test's temporary directory."""
    return _sqlite_url(tmp_path)


@pytest_asyncio.fixture
async def session_factory(
    database_url: str,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = create_async_engine(database_url)
    try:
        await _init_all_storage(engine)
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def loopless_session_factory(
    database_url: str,
) -> typ.Iterator[async_sessionmaker[AsyncSession]]:
    """Yield a session factory usable from several ``asyncio.run`` calls.

    Falcon's test client and the BDD steps each drive their own event loop;
    NullPool keeps connections from leaking between them.
    """
    engine = create_async_engine(database_url, poolclass=NullPool)
    asyncio.run(_init_all_storage(engine))
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        asyncio.run(engine.dispose())


@pytest.fixture
def scheduler() -> RecordingScheduler:
    """Return a scheduler that records instead of enqueueing."""
    return RecordingScheduler()


@pytest.fixture
def stub_broker() -> typ.Iterator[StubBroker]:
    """Yield the process-wide stub broker with empty queues."""
    _STUB_BROKER.flush_all()
    yield _STUB_BROKER
    _STUB_BROKER.flush_all()
