"""Periodic drivers for the sync engine.

The worker process runs four loops side by side:

- process pending webhook events (every second by default),
- promote due retries back to pending (every 30 seconds),
- restart stuck bootstrap jobs and re-dispatch overdue ones (every 10 minutes),
- check installations for suspension (every 30 minutes).

A failing tick is logged and the loop carries on; nothing a single tick
does can stop the others. Bootstrap chunks and file syncs themselves run in
the Dramatiq worker (``dramatiq hubsync.tasks.actors``).

Run with ``python -m hubsync.worker``.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import os
import signal
import typing as typ

from hubsync.bootstrap.reaper import BootstrapReaper, InstallationSweeper
from hubsync.config import (
    BootstrapConfig,
    PollerConfig,
    RetryPolicy,
    database_url_from_env,
)
from hubsync.github.tokens import InstallationTokenCache
from hubsync.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)
from hubsync.processing.processor import WebhookProcessor

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.github.tokens import InstallationTokenMinter
    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)

type Tick = typ.Callable[[], typ.Awaitable[object]]


@dc.dataclass(frozen=True, slots=True)
class PeriodicTask:
    """A named coroutine run every ``interval_s`` seconds."""

    name: str
    interval_s: float
    tick: Tick


async def run_periodic(task: PeriodicTask, stop: asyncio.Event) -> int:
    """Run ``task`` until ``stop`` is set and return the number of ticks.

    Exceptions from a tick are logged, never propagated.
    """
    ticks = 0
    while not stop.is_set():
        try:
            await task.tick()
        except Exception as exc:  # noqa: BLE001 - a failing tick must not end the loop
            log_exception(logger, f"periodic task {task.name} failed", exc)
        ticks += 1
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=task.interval_s)
    return ticks


class SyncWorker:
    """Own the periodic drivers and run them until stopped."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        scheduler: TaskScheduler | None,
        minter: InstallationTokenMinter | None = None,
        poller: PollerConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        bootstrap: BootstrapConfig | None = None,
    ) -> None:
        """Build the processor, reaper and (with a minter) the sweeper."""
        self._poller = poller or PollerConfig()
        self.processor = WebhookProcessor(
            session_factory, scheduler=scheduler, retry_policy=retry_policy
        )
        self.reaper = BootstrapReaper(
            session_factory, scheduler=scheduler, config=bootstrap
        )
        self.sweeper = (
            InstallationSweeper(
                session_factory,
                minter,
                cache=InstallationTokenCache(),
                limit=self._poller.sweep_limit,
            )
            if minter is not None
            else None
        )

    async def _process_pending(self) -> None:
        result = await self.processor.process_pending(self._poller.batch_size)
        if result.total:
            log_info(
                logger,
                "webhook batch processed=%d retried=%d dead_lettered=%d",
                result.processed,
                result.retried,
                result.dead_lettered,
            )

    def tasks(self) -> list[PeriodicTask]:
        """Return the periodic tasks this worker runs."""
        tasks = [
            PeriodicTask(
                "process_pending", self._poller.process_pending_s, self._process_pending
            ),
            PeriodicTask(
                "promote_retries",
                self._poller.promote_retries_s,
                self.processor.promote_due_retries,
            ),
            PeriodicTask("reap_jobs", self._poller.reap_stuck_jobs_s, self.reaper.reap),
        ]
        if self.sweeper is not None:
            tasks.append(
                PeriodicTask(
                    "sweep_installations",
                    self._poller.sweep_installations_s,
                    self.sweeper.sweep,
                )
            )
        return tasks

    async def run(self, stop: asyncio.Event) -> None:
        """Run every periodic task until ``stop`` is set."""
        async with asyncio.TaskGroup() as group:
            for task in self.tasks():
                group.create_task(run_periodic(task, stop), name=task.name)


async def _serve(database_url: str) -> None:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from hubsync.bronze.storage import init_bronze_storage
    from hubsync.factory import build_installation_minter
    from hubsync.tasks.scheduler import DramatiqTaskScheduler

    engine = create_async_engine(database_url)
    await init_bronze_storage(engine)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    minter = build_installation_minter()
    worker = SyncWorker(
        session_factory,
        scheduler=DramatiqTaskScheduler(database_url),
        minter=minter,
        poller=PollerConfig.from_env(),
        retry_policy=RetryPolicy.from_env(),
        bootstrap=BootstrapConfig.from_env(),
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    log_info(logger, "hubsync worker started tasks=%d", len(worker.tasks()))
    try:
        await worker.run(stop)
    finally:
        if minter is not None:
            await minter.aclose()
        await engine.dispose()
    log_info(logger, "hubsync worker stopped")


def main() -> int:
    """Start the periodic worker; return the process exit code."""
    log_level_str = os.environ.get("HUBSYNC_LOG_LEVEL", "INFO")
    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid HUBSYNC_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    database_url = database_url_from_env()
    if database_url is None:
        log_error(logger, "HUBSYNC_DATABASE_URL is required to run the worker")
        return 1
    asyncio.run(_serve(database_url))
    return 0


__all__ = ["PeriodicTask", "SyncWorker", "main", "run_periodic"]


if __name__ == "__main__":
    raise SystemExit(main())
