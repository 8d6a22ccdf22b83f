"""Dramatiq actors for one-shot sync tasks.

``run_bootstrap_job`` executes one chunk of a repository bootstrap and
re-enqueues itself while chunks remain; retries after failures are scheduled
by the workflow with a delay, so Dramatiq's own retries are disabled.
``sync_pull_request_files_job`` fetches one pull request's file diff.

Usage
-----
>>> run_bootstrap_job.send("postgresql+asyncpg://...", "repo-bootstrap:1:2")

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from hubsync.factory import (
    build_bootstrap_workflow,
    build_file_sync,
    build_token_resolver,
)
from hubsync.github.tokens import InstallationTokenCache
from hubsync.logging import get_logger, log_info
from hubsync.tasks._broker import (
    BOOTSTRAP_QUEUE,
    FILE_SYNC_QUEUE,
    ensure_broker_configured,
)
from hubsync.tasks.scheduler import DramatiqTaskScheduler, FileSyncTarget

if typ.TYPE_CHECKING:
    from hubsync.github.tokens import TokenResolver

type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

# Engines use NullPool: every actor call runs in a fresh event loop and
# pooled asyncpg connections cannot cross loops.
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_TOKEN_CACHE = InstallationTokenCache()
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for ``database_url``.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.get(database_url)
            if engine is None:
                engine = create_async_engine(database_url, poolclass=NullPool)
                _ENGINE_CACHE[database_url] = engine
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory, TokenResolver], typ.Awaitable[T]],
) -> T:
    """Run ``async_fn`` in a fresh event loop with a resolver bound to it.

    The installation token cache outlives the loop; the minter's HTTP client
    does not.
    """
    session_factory = _get_or_create_session_factory(database_url)

    async def run() -> T:
        resolver, minter = build_token_resolver(session_factory, cache=_TOKEN_CACHE)
        try:
            return await async_fn(session_factory, resolver)
        finally:
            if minter is not None:
                await minter.aclose()

    return asyncio.run(run())


ensure_broker_configured()


@dramatiq.actor(queue_name=BOOTSTRAP_QUEUE, max_retries=0)
def run_bootstrap_job(database_url: str, lock_key: str) -> str:
    """Run one chunk of the bootstrap identified by ``lock_key``.

    Returns
    -------
    str
        The job state after the chunk.

    """
    scheduler = DramatiqTaskScheduler(database_url)

    async def execute(
        session_factory: SessionFactory, resolver: TokenResolver
    ) -> tuple[str, bool]:
        workflow = build_bootstrap_workflow(session_factory, resolver, scheduler)
        result = await workflow.advance(lock_key)
        return (result.state.value, result.more)

    state, more = _run_actor_async(database_url, execute)
    if more:
        scheduler.schedule_bootstrap(lock_key)
    return state


@dramatiq.actor(queue_name=FILE_SYNC_QUEUE, max_retries=5)
def sync_pull_request_files_job(  # noqa: PLR0913
    database_url: str,
    *,
    installation_id: int,
    repository_id: int,
    full_name: str,
    number: int,
    head_sha: str,
    user_id: str | None = None,
) -> int:
    """Fetch and cache the file diff of one pull request head.

    Returns
    -------
    int
        Number of file rows written.

    """
    target = FileSyncTarget(
        installation_id=installation_id,
        repository_id=repository_id,
        full_name=full_name,
        number=number,
        head_sha=head_sha,
        user_id=user_id,
    )

    async def execute(session_factory: SessionFactory, resolver: TokenResolver) -> int:
        return await build_file_sync(session_factory, resolver).sync(target)

    stored = _run_actor_async(database_url, execute)
    log_info(logger, "file sync task done key=%s files=%d", target.dedupe_key, stored)
    return stored


__all__ = ["run_bootstrap_job", "sync_pull_request_files_job"]
