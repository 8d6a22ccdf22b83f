"""Orchestrate a repository bootstrap one journaled chunk at a time.

A run claims the job (``pending``/``retry`` and due → ``running``) with a
conditional update, resolves a credential, then executes steps from the
journal position. Between chunks the job stays ``running`` and is handed
off by stamping ``next_run_at``; the next chunk claims it back by clearing
that stamp, so a job that is actively executing never carries one. After
each chunk the journal is committed, so a crash loses at most the chunk in
flight and its already-written pages survive.
Failures are caught here and become ``retry`` (with backoff honouring any
rate-limit hint) or ``failed``; they never escape to the task runner.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import httpx
from sqlalchemy import and_, or_, select, update

from hubsync.common.time import add_ms, utcnow
from hubsync.config import BootstrapConfig
from hubsync.github.client import DEFAULT_API_URL, GitHubRestClient
from hubsync.logging import get_logger, log_info
from hubsync.observability import BootstrapEventLogger, is_retryable, truncate_error
from hubsync.processing.backoff import attempts_exhausted, retry_delay_ms

from .errors import SyncJobNotFoundError
from .journal import BootstrapStep, JournalPosition, position_of, record_chunk
from .steps import StepContext, StepTarget, run_step
from .storage import SyncJob, SyncJobState

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql.elements import ColumnElement

    from hubsync.common.time import Clock
    from hubsync.github.tokens import TokenResolver
    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)

CLAIMABLE_STATES = (SyncJobState.PENDING.value, SyncJobState.RETRY.value)


def _claimable(now: dt.datetime) -> ColumnElement[bool]:
    """Match due ``pending``/``retry`` jobs and ``running`` jobs handed off."""
    return or_(
        and_(
            SyncJob.state.in_(CLAIMABLE_STATES),
            or_(SyncJob.next_run_at.is_(None), SyncJob.next_run_at <= now),
        ),
        and_(
            SyncJob.state == SyncJobState.RUNNING.value,
            SyncJob.next_run_at.is_not(None),
            SyncJob.next_run_at <= now,
        ),
    )


@dc.dataclass(frozen=True, slots=True)
class AdvanceResult:
    """Outcome of one :meth:`BootstrapWorkflow.advance` call.

    Attributes
    ----------
    state
        Job state after the call.
    ran
        Whether this call claimed the job and executed anything.
    more
        Whether chunks remain and the job is immediately runnable again.

    """

    lock_key: str
    state: SyncJobState
    ran: bool = False
    more: bool = False
    items: int = 0


class BootstrapWorkflow:
    """Drive the ordered bootstrap steps of a :class:`SyncJob`."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        resolver: TokenResolver,
        scheduler: TaskScheduler | None = None,
        config: BootstrapConfig | None = None,
        api_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        event_logger: BootstrapEventLogger | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Bind storage, credentials and the chunk policy."""
        self._session_factory = session_factory
        self._resolver = resolver
        self._scheduler = scheduler
        self._config = config or BootstrapConfig()
        self._api_url = api_url
        self._http_client = http_client
        self._events = event_logger or BootstrapEventLogger()
        self._clock = clock

    async def advance(self, lock_key: str) -> AdvanceResult:
        """Claim the job and run a single chunk.

        This is the unit a task invocation executes; callers re-enqueue
        while ``more`` is true.
        """
        return await self._execute(lock_key, max_chunks=1)

    async def run(self, lock_key: str) -> AdvanceResult:
        """Claim the job and run chunks until it is done, retrying or failed."""
        return await self._execute(lock_key, max_chunks=None)

    async def _load(self, session: AsyncSession, lock_key: str) -> SyncJob:
        job = await session.scalar(select(SyncJob).where(SyncJob.lock_key == lock_key))
        if job is None:
            raise SyncJobNotFoundError(lock_key)
        return job

    async def _claim(self, lock_key: str, now: dt.datetime) -> SyncJob | None:
        """Flip a due job to ``running``; return ``None`` if another run owns it."""
        async with self._session_factory() as session:
            job = await self._load(session, lock_key)
            result = await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job.id, _claimable(now))
                .values(
                    state=SyncJobState.RUNNING.value, next_run_at=None, updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                await session.rollback()
                log_info(logger, "bootstrap not claimable lock_key=%s", lock_key)
                return None
            await session.commit()
            await session.refresh(job)
            if job.started_at is None:
                job.started_at = now
                await session.commit()
            return job

    async def _current_state(self, lock_key: str) -> SyncJobState:
        async with self._session_factory() as session:
            return SyncJobState((await self._load(session, lock_key)).state)

    async def _execute(self, lock_key: str, *, max_chunks: int | None) -> AdvanceResult:
        job = await self._claim(lock_key, self._clock())
        if job is None:
            return AdvanceResult(lock_key, await self._current_state(lock_key))

        target = StepTarget(
            installation_id=job.installation_id,
            repository_id=job.repository_id,
            full_name=job.full_name,
            user_id=job.user_id,
        )
        items = 0
        try:
            position = position_of(job)
            resolved = await self._resolver.resolve(job.user_id, job.installation_id)
            async with GitHubRestClient(
                resolved.token,
                base_url=self._api_url,
                http_client=self._http_client,
                clock=self._clock,
            ) as client:
                ctx = StepContext(
                    session_factory=self._session_factory,
                    client=client,
                    target=target,
                    config=self._config,
                    scheduler=self._scheduler,
                )
                chunks = 0
                while (step := position.step) is not None and (
                    max_chunks is None or chunks < max_chunks
                ):
                    position, chunk_items = await self._run_chunk(
                        ctx, job, step, position.cursor
                    )
                    items += chunk_items
                    chunks += 1
        except Exception as exc:  # noqa: BLE001
            state = await self._record_failure(job.id, lock_key, exc)
            return AdvanceResult(lock_key, state, ran=True, items=items)

        if position.finished:
            await self._finish(job.id, lock_key)
            return AdvanceResult(lock_key, SyncJobState.DONE, ran=True, items=items)
        await self._hand_off(job.id)
        return AdvanceResult(
            lock_key, SyncJobState.RUNNING, ran=True, more=True, items=items
        )

    async def _run_chunk(
        self,
        ctx: StepContext,
        claimed: SyncJob,
        step: BootstrapStep,
        cursor: str | None,
    ) -> tuple[JournalPosition, int]:
        result = await run_step(ctx, step, cursor)
        async with self._session_factory() as session:
            job = await session.get(SyncJob, claimed.id)
            if job is None:
                raise SyncJobNotFoundError(claimed.lock_key)
            following = record_chunk(job, step, result, self._clock())
            await session.commit()
        self._events.step_completed(
            claimed.lock_key, step.value, result.items, exhausted=result.exhausted
        )
        return (following, result.items)

    async def _finish(self, job_id: int, lock_key: str) -> None:
        now = self._clock()
        async with self._session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                raise SyncJobNotFoundError(lock_key)
            job.state = SyncJobState.DONE.value
            job.current_step = None
            job.step_cursor = None
            job.last_error = None
            job.next_run_at = None
            job.finished_at = now
            job.updated_at = now
            items_fetched = job.items_fetched
            await session.commit()
        self._events.job_done(lock_key, items_fetched)

    async def _hand_off(self, job_id: int) -> None:
        """Keep the job ``running`` but let the next chunk claim it."""
        now = self._clock()
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id)
                .values(next_run_at=now, updated_at=now)
            )
            await session.commit()

    async def _record_failure(
        self, job_id: int, lock_key: str, exc: Exception
    ) -> SyncJobState:
        now = self._clock()
        policy = self._config.retry
        async with self._session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                raise SyncJobNotFoundError(lock_key) from exc
            attempts = job.attempt_count + 1
            job.attempt_count = attempts
            job.last_error = truncate_error(exc)
            job.updated_at = now
            if not is_retryable(exc) or attempts_exhausted(policy, attempts):
                state = SyncJobState.FAILED
                job.next_run_at = None
                job.finished_at = now
                delay_ms = 0
            else:
                state = SyncJobState.RETRY
                delay_ms = retry_delay_ms(policy, attempts, exc)
                job.next_run_at = add_ms(now, delay_ms)
            job.state = state.value
            await session.commit()

        if state is SyncJobState.FAILED:
            self._events.job_failed(lock_key, attempts, exc)
            return state
        self._events.job_retry(lock_key, attempts, delay_ms, exc)
        if self._scheduler is not None:
            self._scheduler.schedule_bootstrap(lock_key, delay_ms=delay_ms)
        return state


__all__ = ["AdvanceResult", "BootstrapWorkflow"]
