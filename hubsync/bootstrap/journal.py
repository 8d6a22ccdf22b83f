"""The step journal kept on each :class:`SyncJob`.

The journal is three columns: ``completed_steps``, ``current_step`` and
``step_cursor``. It is updated in the same transaction after every chunk so
a restarted job skips finished steps and resumes the current one from its
cursor. Only counts go into ``summary``.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from .errors import BootstrapStepError

if typ.TYPE_CHECKING:
    import datetime as dt

    from .storage import SyncJob


class BootstrapStep(enum.StrEnum):
    """Backfill steps, in execution order."""

    BRANCHES = "branches"
    PULL_REQUESTS = "pull_requests"
    ISSUES = "issues"
    COMMITS = "commits"
    CHECK_RUNS = "check_runs"
    WORKFLOW_RUNS = "workflow_runs"
    FILE_SYNCS = "file_syncs"


STEP_ORDER: tuple[BootstrapStep, ...] = tuple(BootstrapStep)


@dc.dataclass(frozen=True, slots=True)
class StepResult:
    """What one invocation of a step produced.

    ``next_cursor`` is ``None`` once the step has nothing left to fetch.
    """

    items: int
    next_cursor: str | None = None

    @property
    def exhausted(self) -> bool:
        """Whether the step is complete."""
        return self.next_cursor is None


@dc.dataclass(frozen=True, slots=True)
class JournalPosition:
    """Where a job resumes: the step to run and its cursor."""

    step: BootstrapStep | None
    cursor: str | None = None

    @property
    def finished(self) -> bool:
        """Whether every step has completed."""
        return self.step is None


def _first_pending(completed: typ.Collection[str]) -> BootstrapStep | None:
    return next((step for step in STEP_ORDER if step.value not in completed), None)


def position_of(job: SyncJob) -> JournalPosition:
    """Return the resume position recorded on ``job``."""
    completed = set(job.completed_steps or [])
    current = job.current_step
    if current is not None and current not in completed:
        try:
            step = BootstrapStep(current)
        except ValueError as exc:
            raise BootstrapStepError.unknown_step(current) from exc
        return JournalPosition(step, job.step_cursor)
    return JournalPosition(_first_pending(completed))


def record_chunk(
    job: SyncJob, step: BootstrapStep, result: StepResult, now: dt.datetime
) -> JournalPosition:
    """Fold one chunk's result into the journal and return the next position.

    Lists and dicts are replaced rather than mutated so the ORM sees the
    change.
    """
    summary = dict(job.summary or {})
    summary[step.value] = summary.get(step.value, 0) + result.items
    job.summary = summary
    job.items_fetched = (job.items_fetched or 0) + result.items
    job.updated_at = now

    if result.exhausted:
        completed = [*(job.completed_steps or []), step.value]
        job.completed_steps = completed
        following = _first_pending(completed)
        job.current_step = following.value if following else None
        job.step_cursor = None
        return JournalPosition(following)

    job.current_step = step.value
    job.step_cursor = result.next_cursor
    return JournalPosition(step, result.next_cursor)


__all__ = [
    "STEP_ORDER",
    "BootstrapStep",
    "JournalPosition",
    "StepResult",
    "position_of",
    "record_chunk",
]
