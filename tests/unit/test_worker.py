"""Unit tests for the periodic worker loops."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from hubsync import worker
from hubsync.config import PollerConfig
from hubsync.worker import PeriodicTask, SyncWorker, run_periodic
from tests.helpers.fakes import FakeMinter, RecordingLogger

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tests.helpers.fakes import RecordingScheduler


@pytest.mark.asyncio
async def test_run_periodic_survives_failing_ticks(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A tick that raises is logged and the loop keeps going."""
    recorder = RecordingLogger()
    monkeypatch.setattr(worker, "logger", recorder)
    stop = asyncio.Event()
    calls = 0

    async def tick() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            msg = "database went away"
            raise RuntimeError(msg)
        if calls == 3:
            stop.set()

    ticks = await run_periodic(PeriodicTask("flaky", 0, tick), stop)

    assert ticks == 3
    assert recorder.messages() == ["periodic task flaky failed"]
    assert isinstance(recorder.lines[0].exc_info, RuntimeError)


@pytest.mark.asyncio
async def test_run_periodic_does_nothing_once_stopped() -> None:
    """A loop started after shutdown never ticks."""
    stop = asyncio.Event()
    stop.set()

    async def tick() -> None:
        pytest.fail("tick should not run")

    assert await run_periodic(PeriodicTask("idle", 0, tick), stop) == 0


@pytest.mark.asyncio
async def test_sweeper_only_runs_with_a_minter(
    session_factory: async_sessionmaker[AsyncSession],
    scheduler: RecordingScheduler,
) -> None:
    """Installation probing needs GitHub App credentials."""
    poller = PollerConfig(sweep_installations_s=60.0)

    without = SyncWorker(session_factory, scheduler=scheduler, poller=poller)
    with_minter = SyncWorker(
        session_factory, scheduler=scheduler, minter=FakeMinter(), poller=poller
    )

    assert [task.name for task in without.tasks()] == [
        "process_pending",
        "promote_retries",
        "reap_jobs",
    ]
    assert without.sweeper is None
    assert [task.name for task in with_minter.tasks()][-1] == "sweep_installations"
    assert with_minter.tasks()[-1].interval_s == 60.0


@pytest.mark.asyncio
async def test_worker_run_returns_when_stopped(
    session_factory: async_sessionmaker[AsyncSession],
    scheduler: RecordingScheduler,
) -> None:
    """Every loop exits at once when shutdown was already requested."""
    sync_worker = SyncWorker(session_factory, scheduler=scheduler)
    stop = asyncio.Event()
    stop.set()

    await asyncio.wait_for(sync_worker.run(stop), timeout=5)

    assert scheduler.bootstraps == []
