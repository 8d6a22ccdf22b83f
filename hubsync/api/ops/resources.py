"""Operator read endpoints over bootstrap jobs and the webhook backlog.

Usage
-----
Register the routes on the Falcon app::

    app.add_route(
        "/api/sync-jobs/{installation_id:int}/{repository_id:int}",
        SyncJobResource(),
    )
    app.add_route("/api/ops/snapshot", OpsSnapshotResource())

"""

from __future__ import annotations

import datetime as dt
import typing as typ
from http import HTTPStatus

from sqlalchemy import select

from hubsync.api.errors import InvalidInputError
from hubsync.bootstrap.errors import SyncJobNotFoundError
from hubsync.bootstrap.storage import SyncJob, bootstrap_lock_key
from hubsync.observability import truncate_error
from hubsync.ops.snapshot import build_snapshot, snapshot_to_builtins

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response
    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["OpsSnapshotResource", "SyncJobResource", "sync_job_progress"]

_STUCK_MINUTES_PARAM = "stuck_minutes"


def _isoformat(value: dt.datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def sync_job_progress(job: SyncJob) -> dict[str, typ.Any]:
    """Return the polling view of a job.

    Only counts and step names are exposed; raw payloads never are, and
    the last error is truncated.
    """
    return {
        "lockKey": job.lock_key,
        "state": job.state,
        "currentStep": job.current_step,
        "completedSteps": list(job.completed_steps or []),
        "summary": dict(job.summary or {}),
        "itemsFetched": job.items_fetched,
        "attemptCount": job.attempt_count,
        "nextRunAt": _isoformat(job.next_run_at),
        "startedAt": _isoformat(job.started_at),
        "finishedAt": _isoformat(job.finished_at),
        "lastError": truncate_error(job.last_error) if job.last_error else None,
    }


class SyncJobResource:
    """Handle ``GET /api/sync-jobs/{installation_id}/{repository_id}``."""

    async def on_get(
        self,
        req: Request,
        resp: Response,
        *,
        installation_id: int,
        repository_id: int,
    ) -> None:
        """Return the bootstrap progress of one repository.

        Raises
        ------
        SyncJobNotFoundError
            If the repository has never been connected.

        """
        session: AsyncSession = req.context.session
        lock_key = bootstrap_lock_key(installation_id, repository_id)
        job = await session.scalar(select(SyncJob).where(SyncJob.lock_key == lock_key))
        if job is None:
            raise SyncJobNotFoundError(lock_key)
        resp.media = sync_job_progress(job)
        resp.status = HTTPStatus.OK


class OpsSnapshotResource:
    """Handle ``GET /api/ops/snapshot``.

    ``?stuck_minutes=N`` overrides the threshold for reporting running jobs
    as stuck.
    """

    async def on_get(self, req: Request, resp: Response) -> None:
        """Return counts, dead letters, failed and stuck jobs."""
        session: AsyncSession = req.context.session
        raw = req.get_param(_STUCK_MINUTES_PARAM)
        kwargs: dict[str, typ.Any] = {}
        if raw is not None:
            try:
                minutes = int(raw)
            except ValueError as exc:
                raise InvalidInputError(
                    "must be an integer", field=_STUCK_MINUTES_PARAM
                ) from exc
            if minutes < 1:
                raise InvalidInputError("must be positive", field=_STUCK_MINUTES_PARAM)
            kwargs["stuck_after"] = dt.timedelta(minutes=minutes)
        snapshot = await build_snapshot(session, **kwargs)
        resp.media = snapshot_to_builtins(snapshot)
        resp.status = HTTPStatus.OK
