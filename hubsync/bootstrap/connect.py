"""Connecting a repository: record it and open its bootstrap job."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hubsync.bootstrap.storage import SyncJob, SyncJobState, bootstrap_lock_key
from hubsync.common.time import utcnow
from hubsync.logging import get_logger, log_info
from hubsync.silver.storage import GitHubInstallation, GitHubRepository

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock
    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class RepositoryConnection:
    """A repository newly granted to an installation."""

    installation_id: int
    repository_id: int
    owner: str
    name: str
    default_branch: str | None = None
    is_private: bool = False
    user_id: str | None = None
    trigger_reason: str = "repo_added"

    @property
    def full_name(self) -> str:
        """``owner/name`` slug."""
        return f"{self.owner}/{self.name}"

    @property
    def lock_key(self) -> str:
        """Lock key of this repository's bootstrap."""
        return bootstrap_lock_key(self.installation_id, self.repository_id)

    @property
    def can_bootstrap(self) -> bool:
        """Whether any credential source exists to run the backfill with."""
        return self.user_id is not None or self.installation_id > 0

    @classmethod
    def from_full_name(
        cls, installation_id: int, repository_id: int, full_name: str, **kwargs: typ.Any
    ) -> RepositoryConnection:
        """Build a connection from an ``owner/name`` slug."""
        owner, _, name = full_name.partition("/")
        if not owner or not name:
            msg = f"repository full name must be owner/name, got: {full_name!r}"
            raise ValueError(msg)
        return cls(installation_id, repository_id, owner, name, **kwargs)


@dc.dataclass(frozen=True, slots=True)
class ConnectResult:
    """Outcome of :meth:`RepositoryConnector.connect`."""

    lock_key: str
    job_id: int
    created: bool
    scheduled: bool


async def record_repository(
    session: AsyncSession, connection: RepositoryConnection, now: dt.datetime
) -> GitHubRepository:
    """Insert or refresh the installation and repository rows."""
    installation = await session.get(GitHubInstallation, connection.installation_id)
    if installation is None:
        session.add(GitHubInstallation(installation_id=connection.installation_id))

    repository = await session.get(GitHubRepository, connection.repository_id)
    if repository is None:
        repository = GitHubRepository(
            repository_id=connection.repository_id,
            installation_id=connection.installation_id,
            connected_at=now,
        )
        session.add(repository)
    repository.installation_id = connection.installation_id
    repository.owner = connection.owner
    repository.name = connection.name
    repository.full_name = connection.full_name
    repository.default_branch = connection.default_branch
    repository.is_private = connection.is_private
    await session.flush()
    return repository


async def ensure_sync_job(
    session: AsyncSession, connection: RepositoryConnection, now: dt.datetime
) -> tuple[SyncJob, bool]:
    """Return the job for the connection's lock key, creating it if absent.

    An existing job, in any state, wins: a second connect for a locked key is
    skipped rather than blocked on.
    """
    lock_key = connection.lock_key
    existing = await session.scalar(select(SyncJob).where(SyncJob.lock_key == lock_key))
    if existing is not None:
        return (existing, False)

    job = SyncJob(
        lock_key=lock_key,
        job_type="backfill",
        scope_type="repository",
        trigger_reason=connection.trigger_reason,
        installation_id=connection.installation_id,
        repository_id=connection.repository_id,
        full_name=connection.full_name,
        user_id=connection.user_id,
        state=SyncJobState.PENDING.value,
        current_step=None,
        completed_steps=[],
        summary={},
        items_fetched=0,
        attempt_count=0,
        next_run_at=now,
        created_at=now,
        updated_at=now,
    )
    try:
        async with session.begin_nested():
            session.add(job)
            await session.flush()
    except IntegrityError:
        with session.no_autoflush:
            existing = await session.scalar(
                select(SyncJob).where(SyncJob.lock_key == lock_key)
            )
        if existing is None:
            raise
        return (existing, False)
    return (job, True)


class RepositoryConnector:
    """Record a connected repository and kick off its bootstrap."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: TaskScheduler,
        *,
        clock: Clock = utcnow,
    ) -> None:
        """Bind storage, the task scheduler and a clock."""
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._clock = clock

    async def connect(self, connection: RepositoryConnection) -> ConnectResult:
        """Persist the repository and schedule a bootstrap for new jobs."""
        now = self._clock()
        async with self._session_factory() as session:
            await record_repository(session, connection, now)
            job, created = await ensure_sync_job(session, connection, now)
            await session.commit()
            job_id = job.id

        scheduled = created and connection.can_bootstrap
        if scheduled:
            self._scheduler.schedule_bootstrap(connection.lock_key)
        log_info(
            logger,
            "repository connected full_name=%s lock_key=%s created=%s scheduled=%s",
            connection.full_name,
            connection.lock_key,
            created,
            scheduled,
        )
        return ConnectResult(
            lock_key=connection.lock_key,
            job_id=job_id,
            created=created,
            scheduled=scheduled,
        )


__all__ = [
    "ConnectResult",
    "RepositoryConnection",
    "RepositoryConnector",
    "ensure_sync_job",
    "record_repository",
]
