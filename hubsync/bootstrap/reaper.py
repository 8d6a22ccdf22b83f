"""Periodic housekeeping for bootstrap jobs and installations.

:class:`BootstrapReaper` restarts jobs stuck in ``running`` (their worker
died or hung) as a fresh attempt and re-dispatches due jobs whose queue
message was lost. :class:`InstallationSweeper` checks installations and
flags the ones GitHub no longer lets us reach.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

import httpx
from sqlalchemy import select

from hubsync.common.time import utcnow
from hubsync.config import BootstrapConfig
from hubsync.github.errors import GitHubAppTokenError
from hubsync.github.tokens import InstallationTokenCache
from hubsync.logging import get_logger, log_exception, log_info, log_warning
from hubsync.observability import BootstrapEventLogger, truncate_error
from hubsync.processing.backoff import attempts_exhausted
from hubsync.silver.storage import GitHubInstallation

from .storage import SyncJob, SyncJobState

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock
    from hubsync.github.tokens import InstallationTokenMinter
    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)

REDISPATCH_GRACE = dt.timedelta(minutes=5)
DEFAULT_SWEEP_LIMIT = 20
_UNREACHABLE_STATUSES = frozenset({403, 404})
_RUNNABLE_STATES = (
    SyncJobState.PENDING.value,
    SyncJobState.RETRY.value,
    SyncJobState.RUNNING.value,
)


@dc.dataclass(frozen=True, slots=True)
class ReapResult:
    """Lock keys touched by one reaper pass."""

    restarted: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    redispatched: tuple[str, ...] = ()


@dc.dataclass(frozen=True, slots=True)
class SweepResult:
    """Installations checked and flagged by one sweep."""

    checked: int = 0
    suspended: tuple[int, ...] = ()


class BootstrapReaper:
    """Recover bootstrap jobs that stopped making progress."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        scheduler: TaskScheduler | None = None,
        config: BootstrapConfig | None = None,
        event_logger: BootstrapEventLogger | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Bind storage, the scheduler and the stuck threshold."""
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._config = config or BootstrapConfig()
        self._events = event_logger or BootstrapEventLogger()
        self._clock = clock

    async def reap(self, now: dt.datetime | None = None) -> ReapResult:
        """Restart stuck jobs, then re-dispatch overdue runnable ones."""
        now = now or self._clock()
        restarted, failed = await self.restart_stuck_jobs(now)
        redispatched = await self.redispatch_due_jobs(now)
        return ReapResult(
            restarted=tuple(restarted),
            failed=tuple(failed),
            redispatched=tuple(redispatched),
        )

    async def restart_stuck_jobs(
        self, now: dt.datetime | None = None
    ) -> tuple[list[str], list[str]]:
        """Treat jobs ``running`` for longer than the threshold as failed attempts.

        Returns the lock keys restarted and the lock keys that ran out of
        attempts and were marked ``failed``.
        """
        now = now or self._clock()
        cutoff = now - self._config.stuck_after
        restarted: list[str] = []
        failed: list[str] = []
        async with self._session_factory() as session:
            jobs = (
                await session.scalars(
                    select(SyncJob).where(
                        SyncJob.state == SyncJobState.RUNNING.value,
                        SyncJob.updated_at < cutoff,
                    )
                )
            ).all()
            for job in jobs:
                job.attempt_count += 1
                job.last_error = truncate_error(
                    f"stuck in running since {job.updated_at.isoformat()}"
                )
                job.updated_at = now
                if attempts_exhausted(self._config.retry, job.attempt_count):
                    job.state = SyncJobState.FAILED.value
                    job.finished_at = now
                    job.next_run_at = None
                    failed.append(job.lock_key)
                else:
                    job.state = SyncJobState.PENDING.value
                    job.next_run_at = now
                    restarted.append(job.lock_key)
                self._events.job_reaped(job.lock_key, job.attempt_count)
            await session.commit()

        self._dispatch(restarted)
        return (restarted, failed)

    async def redispatch_due_jobs(
        self, now: dt.datetime | None = None, *, grace: dt.timedelta = REDISPATCH_GRACE
    ) -> list[str]:
        """Re-send runnable jobs that have been due for longer than ``grace``.

        Runnable covers ``pending`` and ``retry`` jobs as well as ``running``
        jobs handed off between chunks. Duplicate sends are harmless: only
        one run wins the claim.
        """
        now = now or self._clock()
        async with self._session_factory() as session:
            lock_keys = list(
                (
                    await session.scalars(
                        select(SyncJob.lock_key).where(
                            SyncJob.state.in_(_RUNNABLE_STATES),
                            SyncJob.next_run_at <= now - grace,
                        )
                    )
                ).all()
            )
        self._dispatch(lock_keys)
        return lock_keys

    def _dispatch(self, lock_keys: list[str]) -> None:
        if self._scheduler is None:
            return
        for lock_key in lock_keys:
            self._scheduler.schedule_bootstrap(lock_key)


class InstallationSweeper:
    """Check installations by minting a token and flag unreachable ones."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        minter: InstallationTokenMinter,
        *,
        cache: InstallationTokenCache | None = None,
        limit: int = DEFAULT_SWEEP_LIMIT,
        event_logger: BootstrapEventLogger | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Bind storage, the token minter and the per-sweep limit.

        Freshly minted tokens are stored in ``cache`` so the sweep doubles as
        a warm-up for the next bootstrap.
        """
        self._session_factory = session_factory
        self._minter = minter
        self._cache = cache if cache is not None else InstallationTokenCache()
        self._limit = limit
        self._events = event_logger or BootstrapEventLogger()
        self._clock = clock

    async def sweep(self, now: dt.datetime | None = None) -> SweepResult:
        """Check up to ``limit`` active installations, least recently checked first."""
        now = now or self._clock()
        suspended: list[int] = []
        async with self._session_factory() as session:
            installations = (
                await session.scalars(
                    select(GitHubInstallation)
                    .where(GitHubInstallation.suspended_at.is_(None))
                    .order_by(
                        GitHubInstallation.last_checked_at.asc().nulls_first(),
                        GitHubInstallation.installation_id,
                    )
                    .limit(self._limit)
                )
            ).all()
            for installation in installations:
                if await self._check_installation(installation, now):
                    suspended.append(installation.installation_id)
            await session.commit()

        log_info(
            logger,
            "installation sweep checked=%d suspended=%d",
            len(installations),
            len(suspended),
        )
        return SweepResult(checked=len(installations), suspended=tuple(suspended))

    async def _check_installation(
        self, installation: GitHubInstallation, now: dt.datetime
    ) -> bool:
        """Mint a token for ``installation``; return whether it was suspended."""
        installation_id = installation.installation_id
        try:
            token = await self._minter.create_installation_token(installation_id)
        except GitHubAppTokenError as exc:
            if exc.status_code in _UNREACHABLE_STATUSES:
                installation.suspended_at = now
                installation.last_checked_at = now
                self._cache.invalidate(installation_id)
                self._events.installation_suspended(installation_id, exc.status_code)
                return True
            log_warning(
                logger,
                "installation check failed installation_id=%d error=%s",
                installation_id,
                truncate_error(exc),
            )
            return False
        except httpx.HTTPError as exc:
            log_warning(
                logger,
                "installation check failed installation_id=%d error=%s",
                installation_id,
                truncate_error(exc),
            )
            return False
        except Exception as exc:  # noqa: BLE001
            # One bad installation must not lose the suspensions of the others.
            log_exception(
                logger,
                f"installation check crashed installation_id={installation_id}",
                exc,
            )
            return False
        self._cache.put(installation_id, token)
        installation.last_checked_at = now
        return False


__all__ = [
    "REDISPATCH_GRACE",
    "BootstrapReaper",
    "InstallationSweeper",
    "ReapResult",
    "SweepResult",
]
