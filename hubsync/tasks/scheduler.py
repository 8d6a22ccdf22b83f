"""At-least-once scheduling seam between services and the task queue.

Services only see :class:`TaskScheduler`; the Dramatiq implementation lives
here so tests can swap in a recorder without a broker.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ


@dc.dataclass(frozen=True, slots=True)
class FileSyncTarget:
    """Pull request whose file diff should be fetched at ``head_sha``."""

    installation_id: int
    repository_id: int
    full_name: str
    number: int
    head_sha: str
    user_id: str | None = None

    @property
    def dedupe_key(self) -> str:
        """Stable key for (repository, PR number, head SHA)."""
        return f"pr-files:{self.repository_id}:{self.number}:{self.head_sha}"


class TaskScheduler(typ.Protocol):
    """Delayed, at-least-once execution of one-shot tasks."""

    def schedule_bootstrap(self, lock_key: str, *, delay_ms: int = 0) -> None:
        """Run (or continue) the bootstrap identified by ``lock_key``."""
        ...

    def schedule_file_sync(self, target: FileSyncTarget, *, delay_ms: int = 0) -> None:
        """Fetch and cache the file diff of ``target``."""
        ...


class DramatiqTaskScheduler:
    """Send tasks to the Dramatiq actors in :mod:`hubsync.tasks.actors`."""

    def __init__(self, database_url: str) -> None:
        """Remember the database URL the actors should connect to."""
        self._database_url = database_url

    def schedule_bootstrap(self, lock_key: str, *, delay_ms: int = 0) -> None:
        """Enqueue ``run_bootstrap_job``."""
        from hubsync.tasks.actors import run_bootstrap_job

        run_bootstrap_job.send_with_options(
            args=(self._database_url, lock_key), delay=delay_ms or None
        )

    def schedule_file_sync(self, target: FileSyncTarget, *, delay_ms: int = 0) -> None:
        """Enqueue ``sync_pull_request_files_job``."""
        from hubsync.tasks.actors import sync_pull_request_files_job

        sync_pull_request_files_job.send_with_options(
            args=(self._database_url,),
            kwargs=dc.asdict(target),
            delay=delay_ms or None,
        )


__all__ = ["DramatiqTaskScheduler", "FileSyncTarget", "TaskScheduler"]
