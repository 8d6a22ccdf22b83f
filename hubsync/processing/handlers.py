"""Webhook handlers keyed by (event name, action).

Handlers translate one stored delivery into Silver upserts. They share the
processor's transaction and must be safe to replay: every write goes
through the idempotent upsert layer, and follow-up work (file-diff syncs,
bootstraps) is deferred until the processor has committed.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import msgspec
from sqlalchemy import delete

from hubsync.bootstrap.connect import (
    RepositoryConnection,
    ensure_sync_job,
    record_repository,
)
from hubsync.bootstrap.storage import SyncJob
from hubsync.github.errors import GitHubResponseShapeError
from hubsync.github.parsing import (
    GitHubCheckRun,
    GitHubIssue,
    GitHubPullRequest,
    GitHubPushCommit,
    GitHubWorkflowJob,
    GitHubWorkflowRun,
    UserCollector,
    check_run_record,
    decode,
    issue_record,
    pull_request_record,
    push_commit_record,
    workflow_job_record,
    workflow_run_record,
)
from hubsync.logging import get_logger, log_debug
from hubsync.processing.errors import WebhookHandlerError
from hubsync.silver.records import BranchRecord
from hubsync.silver.storage import (
    Branch,
    GitHubInstallation,
    GitHubRepository,
    Issue,
)
from hubsync.silver.upsert import (
    delete_by_natural_key,
    find_by_natural_key,
    upsert_record,
    upsert_records,
)
from hubsync.tasks.scheduler import FileSyncTarget

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession

    from hubsync.bronze.storage import RawWebhookEvent
    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)

type Payload = dict[str, typ.Any]
BRANCH_REF_PREFIX = "refs/heads/"
FILE_SYNC_ACTIONS = frozenset({"opened", "reopened", "synchronize", "ready_for_review"})


@dc.dataclass(slots=True)
class HandlerContext:
    """Everything a handler may touch while applying one event."""

    session: AsyncSession
    event: RawWebhookEvent
    now: dt.datetime
    scheduler: TaskScheduler | None = None
    _deferred: list[typ.Callable[[], None]] = dc.field(default_factory=list)

    @property
    def payload(self) -> Payload:
        """Stored webhook payload."""
        return self.event.payload

    def defer(self, callback: typ.Callable[[], None]) -> None:
        """Run ``callback`` only after the event's writes are committed."""
        self._deferred.append(callback)

    def run_deferred(self) -> None:
        """Run deferred callbacks in registration order."""
        callbacks, self._deferred = self._deferred, []
        for callback in callbacks:
            callback()


type WebhookHandler = typ.Callable[[HandlerContext], typ.Awaitable[None]]


class HandlerRegistry:
    """Map (event name, action) to a handler.

    A handler registered without actions is the fallback for every action of
    its event.
    """

    def __init__(self) -> None:
        """Start with no handlers."""
        self._handlers: dict[tuple[str, str | None], WebhookHandler] = {}

    def register(
        self, event_name: str, *actions: str
    ) -> typ.Callable[[WebhookHandler], WebhookHandler]:
        """Register the decorated handler for ``event_name`` and ``actions``."""

        def _inner(func: WebhookHandler) -> WebhookHandler:
            for action in actions or (None,):
                self._handlers[(event_name, action)] = func
            return func

        return _inner

    def resolve(self, event_name: str, action: str | None) -> WebhookHandler | None:
        """Return the handler for the pair, falling back to the event-wide one."""
        if action is not None:
            handler = self._handlers.get((event_name, action))
            if handler is not None:
                return handler
        return self._handlers.get((event_name, None))

    def __contains__(self, key: tuple[str, str | None]) -> bool:
        """Whether a handler resolves for ``(event_name, action)``."""
        return self.resolve(*key) is not None


default_registry = HandlerRegistry()
register = default_registry.register


def _object(ctx: HandlerContext, key: str) -> Payload:
    value = ctx.payload.get(key)
    if not isinstance(value, dict):
        raise WebhookHandlerError.invalid_payload(
            ctx.event.event_name, f"missing {key}"
        )
    return value


def _decode[StructT: msgspec.Struct](
    ctx: HandlerContext, key: str, model: type[StructT]
) -> StructT:
    try:
        return decode(_object(ctx, key), model, kind=key)
    except GitHubResponseShapeError as exc:
        raise WebhookHandlerError.invalid_payload(
            ctx.event.event_name, str(exc)
        ) from exc


async def _connected_repository(ctx: HandlerContext) -> GitHubRepository | None:
    """Return the event's repository if it is connected to the cache."""
    repository_id = ctx.event.repository_id
    if repository_id is None:
        return None
    repository = await ctx.session.get(GitHubRepository, repository_id)
    if repository is None:
        log_debug(
            logger,
            "skipping %s for unconnected repository_id=%s",
            ctx.event.event_name,
            repository_id,
        )
    return repository


async def _flush_users(ctx: HandlerContext, users: UserCollector) -> None:
    await upsert_records(ctx.session, users.records())


@register("pull_request")
async def handle_pull_request(ctx: HandlerContext) -> None:
    """Upsert the PR and queue a file-diff sync for new head commits."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    pr = _decode(ctx, "pull_request", GitHubPullRequest)
    users = UserCollector()
    record = pull_request_record(repository.repository_id, pr, users)
    await _flush_users(ctx, users)
    await upsert_record(ctx.session, record)

    scheduler = ctx.scheduler
    if (
        scheduler is not None
        and record.state == "open"
        and record.head_sha
        and ctx.event.action in FILE_SYNC_ACTIONS
    ):
        target = FileSyncTarget(
            installation_id=repository.installation_id,
            repository_id=repository.repository_id,
            full_name=repository.full_name,
            number=record.number,
            head_sha=record.head_sha,
        )
        ctx.defer(lambda: scheduler.schedule_file_sync(target))


@register("issues")
async def handle_issue(ctx: HandlerContext) -> None:
    """Upsert or delete the issue."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    issue = _decode(ctx, "issue", GitHubIssue)
    if issue.pull_request is not None:
        return
    if ctx.event.action == "deleted":
        await delete_by_natural_key(
            ctx.session,
            Issue,
            {"repository_id": repository.repository_id, "number": issue.number},
        )
        return
    await _upsert_issue(ctx, repository.repository_id, issue)


@register("issue_comment")
async def handle_issue_comment(ctx: HandlerContext) -> None:
    """Refresh the parent issue, whose payload carries the new comment count.

    The action describes the comment, so a deleted comment still refreshes
    the issue rather than removing it.
    """
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    issue = _decode(ctx, "issue", GitHubIssue)
    if issue.pull_request is not None:
        return
    await _upsert_issue(ctx, repository.repository_id, issue)


async def _upsert_issue(
    ctx: HandlerContext, repository_id: int, issue: GitHubIssue
) -> None:
    users = UserCollector()
    record = issue_record(repository_id, issue, users)
    await _flush_users(ctx, users)
    await upsert_record(ctx.session, record)


@register("push")
async def handle_push(ctx: HandlerContext) -> None:
    """Move the branch head and record pushed commits."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    ref = ctx.payload.get("ref")
    if not isinstance(ref, str) or not ref.startswith(BRANCH_REF_PREFIX):
        return
    branch_name = ref.removeprefix(BRANCH_REF_PREFIX)
    repository_id = repository.repository_id

    if ctx.payload.get("deleted") is True:
        await delete_by_natural_key(
            ctx.session, Branch, {"repository_id": repository_id, "name": branch_name}
        )
        return

    after = ctx.payload.get("after")
    await upsert_record(
        ctx.session,
        BranchRecord(
            repository_id=repository_id,
            name=branch_name,
            head_sha=after if isinstance(after, str) else None,
        ),
    )
    raw_commits = ctx.payload.get("commits") or []
    if not isinstance(raw_commits, list):
        raise WebhookHandlerError.invalid_payload("push", "commits must be a list")
    try:
        commits = [
            decode(item, GitHubPushCommit, kind="push commit") for item in raw_commits
        ]
    except GitHubResponseShapeError as exc:
        raise WebhookHandlerError.invalid_payload("push", str(exc)) from exc
    await upsert_records(
        ctx.session, [push_commit_record(repository_id, commit) for commit in commits]
    )


def _branch_ref(ctx: HandlerContext) -> str | None:
    if ctx.payload.get("ref_type") != "branch":
        return None
    ref = ctx.payload.get("ref")
    return ref if isinstance(ref, str) and ref else None


@register("create")
async def handle_create(ctx: HandlerContext) -> None:
    """Record a new branch unless a push already recorded it."""
    repository = await _connected_repository(ctx)
    name = _branch_ref(ctx)
    if repository is None or name is None:
        return
    key = {"repository_id": repository.repository_id, "name": name}
    if await find_by_natural_key(ctx.session, Branch, key) is None:
        await upsert_record(
            ctx.session, BranchRecord(repository_id=repository.repository_id, name=name)
        )


@register("delete")
async def handle_delete(ctx: HandlerContext) -> None:
    """Drop a deleted branch."""
    repository = await _connected_repository(ctx)
    name = _branch_ref(ctx)
    if repository is None or name is None:
        return
    await delete_by_natural_key(
        ctx.session, Branch, {"repository_id": repository.repository_id, "name": name}
    )


@register("check_run")
async def handle_check_run(ctx: HandlerContext) -> None:
    """Upsert the check run."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    run = _decode(ctx, "check_run", GitHubCheckRun)
    await upsert_record(ctx.session, check_run_record(repository.repository_id, run))


@register("workflow_run")
async def handle_workflow_run(ctx: HandlerContext) -> None:
    """Upsert the workflow run and its actor."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    run = _decode(ctx, "workflow_run", GitHubWorkflowRun)
    users = UserCollector()
    record = workflow_run_record(repository.repository_id, run, users)
    await _flush_users(ctx, users)
    await upsert_record(ctx.session, record)


@register("workflow_job")
async def handle_workflow_job(ctx: HandlerContext) -> None:
    """Upsert the workflow job."""
    repository = await _connected_repository(ctx)
    if repository is None:
        return
    job = _decode(ctx, "workflow_job", GitHubWorkflowJob)
    await upsert_record(ctx.session, workflow_job_record(repository.repository_id, job))


async def _installation_row(
    ctx: HandlerContext, installation_id: int
) -> GitHubInstallation:
    installation = await ctx.session.get(GitHubInstallation, installation_id)
    if installation is None:
        installation = GitHubInstallation(installation_id=installation_id)
        ctx.session.add(installation)
        await ctx.session.flush()
    return installation


def _installation_id(ctx: HandlerContext) -> int:
    installation_id = ctx.event.installation_id
    if installation_id is None:
        raise WebhookHandlerError.invalid_payload(
            ctx.event.event_name, "missing installation.id"
        )
    return installation_id


@register("installation")
async def handle_installation(ctx: HandlerContext) -> None:
    """Track installation lifecycle (created, suspended, deleted)."""
    installation = await _installation_row(ctx, _installation_id(ctx))
    account = _object(ctx, "installation").get("account")
    if isinstance(account, dict):
        login = account.get("login")
        account_type = account.get("type")
        installation.account_login = login if isinstance(login, str) else None
        installation.account_type = (
            account_type if isinstance(account_type, str) else None
        )
    if ctx.event.action in {"suspend", "deleted"}:
        installation.suspended_at = ctx.now
    elif ctx.event.action in {"created", "unsuspend", "new_permissions_accepted"}:
        installation.suspended_at = None


def _added_connections(
    ctx: HandlerContext, installation_id: int
) -> list[RepositoryConnection]:
    added = ctx.payload.get("repositories_added") or []
    if not isinstance(added, list):
        raise WebhookHandlerError.invalid_payload(
            "installation_repositories", "repositories_added must be a list"
        )
    connections: list[RepositoryConnection] = []
    for item in added:
        if not isinstance(item, dict):
            continue
        repository_id = item.get("id")
        full_name = item.get("full_name")
        if not isinstance(repository_id, int) or not isinstance(full_name, str):
            continue
        connections.append(
            RepositoryConnection.from_full_name(
                installation_id,
                repository_id,
                full_name,
                is_private=bool(item.get("private", False)),
            )
        )
    return connections


def _removed_ids(ctx: HandlerContext) -> list[int]:
    removed = ctx.payload.get("repositories_removed") or []
    if not isinstance(removed, list):
        raise WebhookHandlerError.invalid_payload(
            "installation_repositories", "repositories_removed must be a list"
        )
    return [
        item["id"]
        for item in removed
        if isinstance(item, dict) and isinstance(item.get("id"), int)
    ]


@register("installation_repositories")
async def handle_installation_repositories(ctx: HandlerContext) -> None:
    """Connect added repositories and disconnect removed ones."""
    installation_id = _installation_id(ctx)
    await _installation_row(ctx, installation_id)

    for connection in _added_connections(ctx, installation_id):
        await record_repository(ctx.session, connection, ctx.now)
        job, created = await ensure_sync_job(ctx.session, connection, ctx.now)
        scheduler = ctx.scheduler
        if created and connection.can_bootstrap and scheduler is not None:
            lock_key = job.lock_key
            ctx.defer(lambda key=lock_key: scheduler.schedule_bootstrap(key))

    removed_ids = _removed_ids(ctx)
    if removed_ids:
        await ctx.session.execute(
            delete(GitHubRepository).where(
                GitHubRepository.repository_id.in_(removed_ids)
            )
        )
        # Drop the bootstrap job so a later re-add backfills again.
        await ctx.session.execute(
            delete(SyncJob).where(
                SyncJob.installation_id == installation_id,
                SyncJob.repository_id.in_(removed_ids),
            )
        )


__all__ = [
    "HandlerContext",
    "HandlerRegistry",
    "WebhookHandler",
    "default_registry",
    "register",
]
