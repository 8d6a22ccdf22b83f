"""Behavioural coverage for connecting and backfilling a repository."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
from pytest_bdd import given, parsers, scenario, then, when
from sqlalchemy import func, select

from hubsync.bootstrap import STEP_ORDER, RepositoryConnection, SyncJob, SyncJobState
from hubsync.bootstrap.connect import RepositoryConnector
from hubsync.bootstrap.workflow import BootstrapWorkflow
from hubsync.config import BootstrapConfig
from hubsync.github.tokens import TokenResolver
from hubsync.silver import Branch, PullRequest
from tests.helpers.fakes import (
    API_URL,
    FakeGitHub,
    FakeMinter,
    MutableClock,
    RecordingScheduler,
    StaticUserTokens,
)
from tests.helpers.payloads import branch, check_run, commit, issue, pull_request

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.bootstrap.workflow import AdvanceResult


class BootstrapContext(typ.TypedDict, total=False):
    """Shared mutable scenario state."""

    session_factory: async_sessionmaker[AsyncSession]
    scheduler: RecordingScheduler
    minter: FakeMinter
    github: FakeGitHub
    lock_key: str
    result: AdvanceResult


@scenario(
    "../repository_bootstrap.feature",
    "A connected repository is backfilled to completion",
)
def test_repository_backfilled() -> None:
    """Wrap the pytest-bdd scenario."""


@scenario(
    "../repository_bootstrap.feature",
    "A revoked installation fails the bootstrap",
)
def test_revoked_installation_fails_bootstrap() -> None:
    """Wrap the pytest-bdd scenario."""


@pytest.fixture
def bootstrap_context(
    loopless_session_factory: async_sessionmaker[AsyncSession],
) -> BootstrapContext:
    """Provision storage, a recording scheduler and a working minter."""
    return {
        "session_factory": loopless_session_factory,
        "scheduler": RecordingScheduler(),
        "minter": FakeMinter(),
    }


async def _job(session_factory: async_sessionmaker[AsyncSession]) -> SyncJob:
    async with session_factory() as session:
        return (await session.scalars(select(SyncJob))).one()


async def _count(session_factory: async_sessionmaker[AsyncSession], model: type) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model)) or 0


@given(parsers.parse("GitHub serves a small repository {full_name}"))
def given_small_repository(bootstrap_context: BootstrapContext, full_name: str) -> None:
    """Two branches, three pull requests (two open), one issue, two commits."""
    repo = f"/repos/{full_name}"
    listing = "state=all&sort=created&direction=asc&per_page=100"
    fake = FakeGitHub()
    fake.add(f"{repo}/branches?per_page=100", [branch("main"), branch("topic", "def")])
    fake.add(
        f"{repo}/pulls?{listing}",
        [
            pull_request(1, head_sha="sha1"),
            pull_request(2, state="closed", head_sha="sha2"),
            pull_request(3, head_sha="sha3"),
        ],
    )
    fake.add(f"{repo}/issues?{listing}", [issue(11), issue(1, is_pull_request=True)])
    fake.add(f"{repo}/commits?per_page=100", [commit("c1"), commit("c2")])
    for sha in ("sha1", "sha3"):
        fake.add(
            f"{repo}/commits/{sha}/check-runs?per_page=100",
            {"total_count": 1, "check_runs": [check_run(head_sha=sha)]},
        )
    fake.add(
        f"{repo}/actions/runs?per_page=100", {"total_count": 0, "workflow_runs": []}
    )
    bootstrap_context["github"] = fake


@given(parsers.parse("installation {installation_id:d} has been uninstalled"))
def given_uninstalled(
    bootstrap_context: BootstrapContext, installation_id: int
) -> None:
    """GitHub answers 404 when minting tokens for the installation."""
    bootstrap_context["minter"] = FakeMinter(failures={installation_id: 404})


@when(
    parsers.parse("the repository is connected for installation {installation_id:d}")
)
def when_connected(bootstrap_context: BootstrapContext, installation_id: int) -> None:
    """Connect the repository, which opens and schedules its bootstrap job."""
    connector = RepositoryConnector(
        bootstrap_context["session_factory"],
        bootstrap_context["scheduler"],
        clock=MutableClock(),
    )
    result = asyncio.run(
        connector.connect(
            RepositoryConnection.from_full_name(
                installation_id, 1001, "acme/widgets", default_branch="main"
            )
        )
    )
    assert result.scheduled
    bootstrap_context["lock_key"] = result.lock_key


@when("the bootstrap job runs until it stops")
def when_bootstrap_runs(bootstrap_context: BootstrapContext) -> None:
    """Run the job as the Dramatiq actor would."""
    workflow = BootstrapWorkflow(
        bootstrap_context["session_factory"],
        resolver=TokenResolver(
            user_tokens=StaticUserTokens(), minter=bootstrap_context["minter"]
        ),
        scheduler=bootstrap_context["scheduler"],
        config=BootstrapConfig(),
        api_url=API_URL,
        http_client=bootstrap_context["github"].client(),
        clock=MutableClock(),
    )
    bootstrap_context["result"] = asyncio.run(
        workflow.run(bootstrap_context["lock_key"])
    )


@then("the bootstrap job is done with every step completed")
def then_job_done(bootstrap_context: BootstrapContext) -> None:
    """Every step is journaled as complete."""
    job = asyncio.run(_job(bootstrap_context["session_factory"]))

    assert bootstrap_context["result"].state == SyncJobState.DONE
    assert job.state == SyncJobState.DONE
    assert job.completed_steps == [step.value for step in STEP_ORDER]
    assert job.finished_at is not None


@then(parsers.parse("{branches:d} branches and {prs:d} pull requests are cached"))
def then_cached(bootstrap_context: BootstrapContext, branches: int, prs: int) -> None:
    """Pull requests are counted once even though the issues feed lists one."""
    session_factory = bootstrap_context["session_factory"]

    assert asyncio.run(_count(session_factory, Branch)) == branches
    assert asyncio.run(_count(session_factory, PullRequest)) == prs


@then("a file diff sync is queued for each open pull request")
def then_file_syncs_queued(bootstrap_context: BootstrapContext) -> None:
    """Closed pull requests get no file diff sync."""
    queued = [
        (target.number, target.head_sha)
        for target, _ in bootstrap_context["scheduler"].file_syncs
    ]

    assert sorted(queued) == [(1, "sha1"), (3, "sha3")]


@then("the bootstrap job has failed without retrying")
def then_job_failed(bootstrap_context: BootstrapContext) -> None:
    """A revoked installation is terminal; only the initial dispatch exists."""
    job = asyncio.run(_job(bootstrap_context["session_factory"]))

    assert job.state == SyncJobState.FAILED
    assert job.last_error is not None
    assert "NoGitHubTokenError" in job.last_error
    assert bootstrap_context["scheduler"].bootstrap_keys == [
        bootstrap_context["lock_key"]
    ]
