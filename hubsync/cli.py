"""Operator command line for the sync engine.

Usage:
    hubsync connect 42 1001 acme/widgets   # Connect a repository
    hubsync snapshot                       # Print the ops snapshot as JSON
    hubsync requeue <delivery-id>          # Requeue a dead-lettered delivery

Environment variables:
    HUBSYNC_DATABASE_URL - SQLAlchemy async URL (or pass --database-url)
"""

from __future__ import annotations

import asyncio
import datetime as dt
import sys
import typing as typ

import msgspec
from cyclopts import App, Parameter

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

type SessionFactory = async_sessionmaker[AsyncSession]
DatabaseUrl = typ.Annotated[str | None, Parameter(env_var="HUBSYNC_DATABASE_URL")]

app = App(
    name="hubsync",
    help="Operator commands for the hubsync GitHub sync engine",
    version="0.1.0",
)


def _with_sessions[T](
    database_url: str | None,
    work: typ.Callable[[SessionFactory, str], typ.Awaitable[T]],
) -> T | None:
    """Run ``work`` against a fresh engine; ``None`` when no URL is known."""
    if not database_url:
        print(
            "error: HUBSYNC_DATABASE_URL or --database-url is required",
            file=sys.stderr,
        )
        return None

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    async def run() -> T:
        engine = create_async_engine(database_url)
        try:
            return await work(
                async_sessionmaker(engine, expire_on_commit=False), database_url
            )
        finally:
            await engine.dispose()

    return asyncio.run(run())


@app.command
def connect(  # noqa: PLR0913
    installation_id: int,
    repository_id: int,
    full_name: str,
    *,
    default_branch: str | None = None,
    user_id: str | None = None,
    database_url: DatabaseUrl = None,
) -> int:
    """Record a repository for an installation and schedule its bootstrap.

    Connecting a repository that already has a bootstrap job leaves the job
    untouched.

    Args:
        installation_id: GitHub App installation id.
        repository_id: GitHub repository id.
        full_name: Repository slug, ``owner/name``.
        default_branch: Default branch name, when known.
        user_id: User whose OAuth token the bootstrap should prefer.
        database_url: SQLAlchemy async database URL.

    Returns:
        Exit code (0 for success, 2 for invalid input).

    """
    from hubsync.bootstrap.connect import RepositoryConnection, RepositoryConnector
    from hubsync.tasks.scheduler import DramatiqTaskScheduler

    try:
        connection = RepositoryConnection.from_full_name(
            installation_id,
            repository_id,
            full_name,
            default_branch=default_branch,
            user_id=user_id,
            trigger_reason="manual",
        )
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    async def work(session_factory: SessionFactory, url: str) -> int:
        connector = RepositoryConnector(session_factory, DramatiqTaskScheduler(url))
        result = await connector.connect(connection)
        state = "created" if result.created else "already exists"
        print(
            f"{result.lock_key}: job {result.job_id} {state}, "
            f"scheduled={'yes' if result.scheduled else 'no'}"
        )
        return 0

    exit_code = _with_sessions(database_url, work)
    return 2 if exit_code is None else exit_code


@app.command
def snapshot(
    *,
    stuck_minutes: int = 30,
    database_url: DatabaseUrl = None,
) -> int:
    """Print the operational snapshot as JSON.

    Args:
        stuck_minutes: Minutes a running job may go untouched before it is
            listed as stuck.
        database_url: SQLAlchemy async database URL.

    Returns:
        Exit code (0 for success, 2 for invalid input).

    """
    from hubsync.ops.snapshot import build_snapshot

    if stuck_minutes < 1:
        print("error: --stuck-minutes must be positive", file=sys.stderr)
        return 2

    async def work(session_factory: SessionFactory, _url: str) -> int:
        async with session_factory() as session:
            result = await build_snapshot(
                session, stuck_after=dt.timedelta(minutes=stuck_minutes)
            )
        print(msgspec.json.format(msgspec.json.encode(result)).decode())
        return 0

    exit_code = _with_sessions(database_url, work)
    return 2 if exit_code is None else exit_code


@app.command
def requeue(delivery_id: str, *, database_url: DatabaseUrl = None) -> int:
    """Move a dead-lettered webhook delivery back to pending.

    The delivery gets a fresh attempt budget.

    Args:
        delivery_id: The ``X-GitHub-Delivery`` id of the dead letter.
        database_url: SQLAlchemy async database URL.

    Returns:
        Exit code (0 when requeued, 1 when no such dead letter exists).

    """
    from hubsync.processing.processor import WebhookProcessor

    async def work(session_factory: SessionFactory, _url: str) -> int:
        if await WebhookProcessor(session_factory).requeue_dead_letter(delivery_id):
            print(f"{delivery_id}: requeued")
            return 0
        print(f"{delivery_id}: not dead-lettered", file=sys.stderr)
        return 1

    exit_code = _with_sessions(database_url, work)
    return 2 if exit_code is None else exit_code


def main() -> int:
    """Entry point for the CLI."""
    return app()


if __name__ == "__main__":
    sys.exit(main())
