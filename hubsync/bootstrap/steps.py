"""Fetch-and-upsert units driven by the bootstrap workflow.

Every step takes the cursor recorded in the job's journal (``None`` on first
entry) and returns a :class:`StepResult`. Chunked steps stop after
``pages_per_chunk`` pages and hand back the next ``Link`` URL; the workflow
re-invokes them until the cursor is exhausted. Pages are written in small
committed batches before the next page is fetched, so a failed chunk never
loses rows already written. Accounts seen during a step are upserted once,
when the step invocation ends.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import itertools
import typing as typ

from sqlalchemy import select

from hubsync.config import BootstrapConfig
from hubsync.github.errors import GitHubAPIError
from hubsync.github.parsing import (
    GitHubBranch,
    GitHubCheckRun,
    GitHubCommit,
    GitHubIssue,
    GitHubPullRequest,
    GitHubWorkflowJob,
    GitHubWorkflowRun,
    UserCollector,
    branch_record,
    check_run_record,
    commit_record,
    decode,
    is_pull_request_issue,
    issue_record,
    pull_request_record,
    workflow_job_record,
    workflow_run_record,
)
from hubsync.silver.storage import PullRequest
from hubsync.silver.upsert import upsert_records
from hubsync.tasks.scheduler import FileSyncTarget

from .errors import BootstrapStepError
from .journal import BootstrapStep, StepResult

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.github.client import GitHubRestClient
    from hubsync.silver.records import SilverRecord
    from hubsync.tasks.scheduler import TaskScheduler

_HTTP_CONFLICT = 409
ACTIVE_RUN_STATUSES = frozenset({"in_progress", "queued", "completed"})


@dc.dataclass(frozen=True, slots=True)
class StepTarget:
    """Repository being backfilled and the identity to schedule follow-ups as."""

    installation_id: int
    repository_id: int
    full_name: str
    user_id: str | None = None


@dc.dataclass(slots=True)
class StepContext:
    """Collaborators shared by every step of one job run."""

    session_factory: async_sessionmaker[AsyncSession]
    client: GitHubRestClient
    target: StepTarget
    config: BootstrapConfig = dc.field(default_factory=BootstrapConfig)
    scheduler: TaskScheduler | None = None

    def repo_path(self, suffix: str) -> str:
        """Return ``repos/{full_name}/{suffix}``."""
        return f"repos/{self.target.full_name}/{suffix}"

    @property
    def repository_id(self) -> int:
        """Repository id the records are scoped to."""
        return self.target.repository_id


type StepFunction = typ.Callable[[StepContext, str | None], typ.Awaitable[StepResult]]
type PageWriter = typ.Callable[[list[dict[str, typ.Any]]], typ.Awaitable[int]]


async def write_records(
    ctx: StepContext, records: cabc.Iterable[SilverRecord]
) -> int:
    """Upsert ``records`` in committed batches and return how many were seen."""
    seen = 0
    for batch in itertools.batched(records, ctx.config.write_batch_size):
        async with ctx.session_factory() as session:
            counts = await upsert_records(session, batch)
            await session.commit()
        seen += counts.total
    return seen


async def _flush_users(ctx: StepContext, users: UserCollector) -> None:
    if users:
        await write_records(ctx, users.records())


async def paginate_chunk(
    ctx: StepContext, first_path: str, cursor: str | None, write_page: PageWriter
) -> StepResult:
    """Fetch at most ``pages_per_chunk`` pages, writing each before the next.

    ``cursor`` is the absolute ``Link`` URL a previous chunk stopped at.
    """
    url: str | None = cursor or first_path
    items = 0
    for _ in range(ctx.config.pages_per_chunk):
        if url is None:
            break
        response = await ctx.client.get(url)
        items += await write_page(response.as_list())
        url = response.next_url
    return StepResult(items=items, next_cursor=url)


async def sync_branches(ctx: StepContext, cursor: str | None) -> StepResult:
    """Upsert the first page of branches."""
    del cursor
    response = await ctx.client.get(
        ctx.repo_path(f"branches?per_page={ctx.config.per_page}")
    )
    records = [
        branch_record(ctx.repository_id, decode(item, GitHubBranch, kind="branch"))
        for item in response.as_list()
    ]
    return StepResult(items=await write_records(ctx, records))


async def sync_pull_requests(ctx: StepContext, cursor: str | None) -> StepResult:
    """Page through every pull request, oldest first, one chunk at a time."""
    users = UserCollector()

    async def write_page(items: list[dict[str, typ.Any]]) -> int:
        records = [
            pull_request_record(
                ctx.repository_id,
                decode(item, GitHubPullRequest, kind="pull request"),
                users,
            )
            for item in items
        ]
        return await write_records(ctx, records)

    result = await paginate_chunk(
        ctx,
        ctx.repo_path(
            "pulls?state=all&sort=created&direction=asc"
            f"&per_page={ctx.config.per_page}"
        ),
        cursor,
        write_page,
    )
    await _flush_users(ctx, users)
    return result


async def sync_issues(ctx: StepContext, cursor: str | None) -> StepResult:
    """Page through every issue, skipping the pull requests the listing mixes in."""
    users = UserCollector()

    async def write_page(items: list[dict[str, typ.Any]]) -> int:
        records = [
            issue_record(
                ctx.repository_id, decode(item, GitHubIssue, kind="issue"), users
            )
            for item in items
            if not is_pull_request_issue(item)
        ]
        return await write_records(ctx, records)

    result = await paginate_chunk(
        ctx,
        ctx.repo_path(
            "issues?state=all&sort=created&direction=asc"
            f"&per_page={ctx.config.per_page}"
        ),
        cursor,
        write_page,
    )
    await _flush_users(ctx, users)
    return result


async def sync_commits(ctx: StepContext, cursor: str | None) -> StepResult:
    """Upsert the most recent page of commits on the default branch."""
    del cursor
    try:
        response = await ctx.client.get(
            ctx.repo_path(f"commits?per_page={ctx.config.per_page}")
        )
    except GitHubAPIError as exc:
        # GitHub answers 409 for a repository with no commits yet.
        if exc.status_code == _HTTP_CONFLICT:
            return StepResult(items=0)
        raise
    users = UserCollector()
    records = [
        commit_record(
            ctx.repository_id, decode(item, GitHubCommit, kind="commit"), users
        )
        for item in response.as_list()
    ]
    items = await write_records(ctx, records)
    await _flush_users(ctx, users)
    return StepResult(items=items)


async def open_pull_requests(
    ctx: StepContext, *, after_number: int = 0, limit: int | None = None
) -> list[PullRequest]:
    """Return stored open PRs with a head SHA, ordered by number."""
    stmt = (
        select(PullRequest)
        .where(
            PullRequest.repository_id == ctx.repository_id,
            PullRequest.state == "open",
            PullRequest.head_sha.is_not(None),
            PullRequest.number > after_number,
        )
        .order_by(PullRequest.number)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    async with ctx.session_factory() as session:
        return list((await session.scalars(stmt)).all())


def _parse_number_cursor(step: BootstrapStep, cursor: str | None) -> int:
    if cursor is None:
        return 0
    try:
        return int(cursor)
    except ValueError as exc:
        raise BootstrapStepError.invalid_cursor(step.value, cursor) from exc


async def sync_check_runs(ctx: StepContext, cursor: str | None) -> StepResult:
    """Upsert check runs for the head SHAs of a batch of open PRs.

    The SHAs are read back from stored pull requests; the cursor is the last
    PR number handled.
    """
    after = _parse_number_cursor(BootstrapStep.CHECK_RUNS, cursor)
    batch = ctx.config.check_run_sha_batch
    prs = await open_pull_requests(ctx, after_number=after, limit=batch)
    items = 0
    for head_sha in dict.fromkeys(pr.head_sha for pr in prs if pr.head_sha):
        response = await ctx.client.get_optional(
            ctx.repo_path(
                f"commits/{head_sha}/check-runs?per_page={ctx.config.per_page}"
            )
        )
        if response is None:
            continue
        raw_runs = response.as_object().get("check_runs") or []
        records = [
            check_run_record(
                ctx.repository_id, decode(item, GitHubCheckRun, kind="check run")
            )
            for item in raw_runs
        ]
        items += await write_records(ctx, records)
    next_cursor = str(prs[-1].number) if len(prs) == batch else None
    return StepResult(items=items, next_cursor=next_cursor)


def most_recently_active(
    runs: cabc.Iterable[GitHubWorkflowRun], limit: int
) -> list[GitHubWorkflowRun]:
    """Pick at most ``limit`` queued, running or concluded runs, newest first."""
    active = [run for run in runs if run.status in ACTIVE_RUN_STATUSES]
    active.sort(key=lambda run: run.updated_at or "", reverse=True)
    return active[:limit]


async def sync_workflow_runs(ctx: StepContext, cursor: str | None) -> StepResult:
    """Upsert recent workflow runs, then the jobs of the most active ones."""
    del cursor
    response = await ctx.client.get_optional(
        ctx.repo_path(f"actions/runs?per_page={ctx.config.per_page}")
    )
    if response is None:
        return StepResult(items=0)
    runs = [
        decode(item, GitHubWorkflowRun, kind="workflow run")
        for item in response.as_object().get("workflow_runs") or []
    ]
    users = UserCollector()
    items = await write_records(
        ctx, [workflow_run_record(ctx.repository_id, run, users) for run in runs]
    )
    await _flush_users(ctx, users)

    for run in most_recently_active(runs, ctx.config.workflow_job_run_limit):
        jobs_response = await ctx.client.get_optional(
            ctx.repo_path(f"actions/runs/{run.id}/jobs?per_page={ctx.config.per_page}")
        )
        if jobs_response is None:
            continue
        jobs = [
            workflow_job_record(
                ctx.repository_id, decode(item, GitHubWorkflowJob, kind="workflow job")
            )
            for item in jobs_response.as_object().get("jobs") or []
        ]
        items += await write_records(ctx, jobs)
    return StepResult(items=items)


async def schedule_file_syncs(ctx: StepContext, cursor: str | None) -> StepResult:
    """Queue an independent file-diff sync for every open PR."""
    del cursor
    scheduler = ctx.scheduler
    if scheduler is None:
        return StepResult(items=0)
    prs = await open_pull_requests(ctx)
    for pr in prs:
        scheduler.schedule_file_sync(
            FileSyncTarget(
                installation_id=ctx.target.installation_id,
                repository_id=ctx.repository_id,
                full_name=ctx.target.full_name,
                number=pr.number,
                head_sha=typ.cast("str", pr.head_sha),
                user_id=ctx.target.user_id,
            )
        )
    return StepResult(items=len(prs))


STEP_FUNCTIONS: dict[BootstrapStep, StepFunction] = {
    BootstrapStep.BRANCHES: sync_branches,
    BootstrapStep.PULL_REQUESTS: sync_pull_requests,
    BootstrapStep.ISSUES: sync_issues,
    BootstrapStep.COMMITS: sync_commits,
    BootstrapStep.CHECK_RUNS: sync_check_runs,
    BootstrapStep.WORKFLOW_RUNS: sync_workflow_runs,
    BootstrapStep.FILE_SYNCS: schedule_file_syncs,
}


async def run_step(
    ctx: StepContext, step: BootstrapStep, cursor: str | None
) -> StepResult:
    """Invoke ``step`` once from ``cursor``."""
    try:
        function = STEP_FUNCTIONS[step]
    except KeyError as exc:
        raise BootstrapStepError.unknown_step(str(step)) from exc
    return await function(ctx, cursor)


__all__ = [
    "ACTIVE_RUN_STATUSES",
    "STEP_FUNCTIONS",
    "StepContext",
    "StepTarget",
    "most_recently_active",
    "open_pull_requests",
    "paginate_chunk",
    "run_step",
    "write_records",
]
