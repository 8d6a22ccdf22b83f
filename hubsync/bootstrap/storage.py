"""Persistence for repository bootstrap jobs."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import enum
import typing as typ

from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hubsync.bronze.storage import Base, UTCDateTime
from hubsync.common.time import utcnow

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class SyncJobState(enum.StrEnum):
    """Coarse job state, also what the dashboard polls."""

    PENDING = "pending"
    RUNNING = "running"
    RETRY = "retry"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SyncJobState.DONE.value, SyncJobState.FAILED.value})


class SyncJob(Base):
    """One backfill per lock key, with its resumable step journal.

    ``completed_steps`` and ``step_cursor`` form the journal: a restarted
    orchestrator skips completed steps and resumes the current one from its
    cursor. ``summary`` keeps per-step counts only, never payloads.
    """

    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("ix_sync_jobs_state_updated", "state", "updated_at"),
        Index("ix_sync_jobs_repository", "installation_id", "repository_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lock_key: Mapped[str] = mapped_column(String(255), unique=True)
    job_type: Mapped[str] = mapped_column(String(32), default="backfill")
    scope_type: Mapped[str] = mapped_column(String(32), default="repository")
    trigger_reason: Mapped[str] = mapped_column(String(64), default="repo_added")
    installation_id: Mapped[int] = mapped_column(BigInteger)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    full_name: Mapped[str] = mapped_column(String(512))
    user_id: Mapped[str | None] = mapped_column(String(64), default=None)
    state: Mapped[str] = mapped_column(String(16), default=SyncJobState.PENDING.value)
    current_step: Mapped[str | None] = mapped_column(String(64), default=None)
    completed_steps: Mapped[list[str]] = mapped_column(JSON, default=list)
    step_cursor: Mapped[str | None] = mapped_column(Text(), default=None)
    summary: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    items_fetched: Mapped[int] = mapped_column(Integer, default=0)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    next_run_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    finished_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Whether the job reached ``done`` or ``failed``."""
        return self.state in TERMINAL_STATES


def bootstrap_lock_key(installation_id: int, repository_id: int) -> str:
    """Return the advisory lock key of a repository bootstrap."""
    return f"repo-bootstrap:{installation_id}:{repository_id}"


async def init_bootstrap_storage(engine: AsyncEngine) -> None:
    """Create the sync job table if absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
