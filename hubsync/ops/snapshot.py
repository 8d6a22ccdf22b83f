"""Operational snapshot of the sync engine for manual triage.

Dead letters and failed jobs never heal on their own; this read path is how
an operator finds them, alongside the webhook backlog and jobs that look
stuck.
"""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec
from sqlalchemy import func, select

from hubsync.bootstrap.storage import SyncJob, SyncJobState
from hubsync.bronze.storage import RawWebhookEvent, WebhookProcessState
from hubsync.common.time import utcnow
from hubsync.observability import truncate_error

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_ITEM_LIMIT = 50
DEFAULT_STUCK_AFTER = dt.timedelta(minutes=30)


class DeadLetterSummary(msgspec.Struct, frozen=True):
    """A delivery that exhausted its attempts."""

    delivery_id: str
    event_name: str
    action: str | None
    attempt_count: int
    last_error: str | None
    received_at: dt.datetime


class JobSummary(msgspec.Struct, frozen=True):
    """A bootstrap job needing attention."""

    lock_key: str
    full_name: str
    state: str
    current_step: str | None
    attempt_count: int
    last_error: str | None
    updated_at: dt.datetime


class OpsSnapshot(msgspec.Struct, frozen=True):
    """Counts and the items an operator should look at."""

    generated_at: dt.datetime
    webhook_counts: dict[str, int]
    job_counts: dict[str, int]
    dead_letters: list[DeadLetterSummary]
    failed_jobs: list[JobSummary]
    stuck_jobs: list[JobSummary]


def _job_summary(job: SyncJob) -> JobSummary:
    return JobSummary(
        lock_key=job.lock_key,
        full_name=job.full_name,
        state=job.state,
        current_step=job.current_step,
        attempt_count=job.attempt_count,
        last_error=truncate_error(job.last_error) if job.last_error else None,
        updated_at=job.updated_at,
    )


async def _counts_by(
    session: AsyncSession, column: typ.Any, states: typ.Iterable[str]
) -> dict[str, int]:
    counts = dict.fromkeys(states, 0)
    rows = await session.execute(select(column, func.count()).group_by(column))
    for state, count in rows.all():
        counts[state] = count
    return counts


async def build_snapshot(
    session: AsyncSession,
    *,
    now: dt.datetime | None = None,
    stuck_after: dt.timedelta = DEFAULT_STUCK_AFTER,
    limit: int = DEFAULT_ITEM_LIMIT,
) -> OpsSnapshot:
    """Collect the operational snapshot in one session."""
    now = now or utcnow()
    webhook_counts = await _counts_by(
        session,
        RawWebhookEvent.process_state,
        (state.value for state in WebhookProcessState),
    )
    job_counts = await _counts_by(
        session, SyncJob.state, (state.value for state in SyncJobState)
    )

    dead_letters = (
        await session.scalars(
            select(RawWebhookEvent)
            .where(
                RawWebhookEvent.process_state
                == WebhookProcessState.DEAD_LETTER.value
            )
            .order_by(RawWebhookEvent.received_at.desc())
            .limit(limit)
        )
    ).all()
    failed_jobs = (
        await session.scalars(
            select(SyncJob)
            .where(SyncJob.state == SyncJobState.FAILED.value)
            .order_by(SyncJob.updated_at.desc())
            .limit(limit)
        )
    ).all()
    stuck_jobs = (
        await session.scalars(
            select(SyncJob)
            .where(
                SyncJob.state == SyncJobState.RUNNING.value,
                SyncJob.updated_at < now - stuck_after,
            )
            .order_by(SyncJob.updated_at)
            .limit(limit)
        )
    ).all()

    return OpsSnapshot(
        generated_at=now,
        webhook_counts=webhook_counts,
        job_counts=job_counts,
        dead_letters=[
            DeadLetterSummary(
                delivery_id=event.delivery_id,
                event_name=event.event_name,
                action=event.action,
                attempt_count=event.attempt_count,
                last_error=event.last_error,
                received_at=event.received_at,
            )
            for event in dead_letters
        ],
        failed_jobs=[_job_summary(job) for job in failed_jobs],
        stuck_jobs=[_job_summary(job) for job in stuck_jobs],
    )


def snapshot_to_builtins(snapshot: OpsSnapshot) -> dict[str, typ.Any]:
    """Return ``snapshot`` as JSON-ready builtins (ISO-8601 timestamps)."""
    return typ.cast("dict[str, typ.Any]", msgspec.to_builtins(snapshot))


__all__ = [
    "DeadLetterSummary",
    "JobSummary",
    "OpsSnapshot",
    "build_snapshot",
    "snapshot_to_builtins",
]
