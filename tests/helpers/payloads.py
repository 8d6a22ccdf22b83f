"""Builders for GitHub-shaped objects used by webhook and bootstrap tests."""

from __future__ import annotations

import itertools
import typing as typ

from hubsync.bootstrap.connect import RepositoryConnection, record_repository
from hubsync.bronze import RawWebhookEvent, WebhookProcessState
from hubsync.common.time import utcnow

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

INSTALLATION_ID = 42
REPOSITORY_ID = 1001
FULL_NAME = "acme/widgets"

type Payload = dict[str, typ.Any]

_delivery_seq = itertools.count(1)


def account(user_id: int = 7, login: str = "octocat") -> Payload:
    """Return a GitHub account object."""
    return {"id": user_id, "login": login, "type": "User", "site_admin": False}


def repository(
    repository_id: int = REPOSITORY_ID, full_name: str = FULL_NAME
) -> Payload:
    """Return the ``repository`` object of a webhook payload."""
    owner, _, name = full_name.partition("/")
    return {
        "id": repository_id,
        "name": name,
        "full_name": full_name,
        "owner": {"login": owner},
        "default_branch": "main",
        "private": False,
    }


def pull_request(  # noqa: PLR0913
    number: int = 5,
    *,
    title: str = "Add widgets",
    state: str = "open",
    updated_at: str = "2024-07-01T10:00:00Z",
    head_sha: str = "abc123",
    author: Payload | None = None,
) -> Payload:
    """Return a pull request object."""
    return {
        "id": 9000 + number,
        "number": number,
        "title": title,
        "state": state,
        "draft": False,
        "user": author or account(),
        "head": {"ref": "feature", "sha": head_sha},
        "base": {"ref": "main", "sha": "base000"},
        "created_at": "2024-06-30T09:00:00Z",
        "updated_at": updated_at,
    }


def issue(
    number: int = 11,
    *,
    title: str = "Widgets are wobbly",
    updated_at: str = "2024-07-01T10:00:00Z",
    comments: int = 0,
    is_pull_request: bool = False,
) -> Payload:
    """Return an issue object, optionally shaped like a PR in the issues feed."""
    raw: Payload = {
        "id": 5000 + number,
        "number": number,
        "title": title,
        "state": "open",
        "user": account(),
        "labels": [{"name": "bug"}],
        "comments": comments,
        "created_at": "2024-06-30T09:00:00Z",
        "updated_at": updated_at,
    }
    if is_pull_request:
        raw["pull_request"] = {"url": "https://api.github.test/pulls/1"}
    return raw


def check_run(
    run_id: int = 300,
    *,
    status: str = "completed",
    conclusion: str | None = "success",
    started_at: str = "2024-07-01T10:00:00Z",
    completed_at: str | None = "2024-07-01T10:05:00Z",
    head_sha: str = "abc123",
) -> Payload:
    """Return a check run object."""
    return {
        "id": run_id,
        "name": "ci",
        "head_sha": head_sha,
        "status": status,
        "conclusion": conclusion,
        "started_at": started_at,
        "completed_at": completed_at,
    }


def workflow_run(
    run_id: int = 400,
    *,
    status: str = "completed",
    updated_at: str = "2024-07-01T10:06:00Z",
) -> Payload:
    """Return a workflow run object."""
    return {
        "id": run_id,
        "workflow_id": 77,
        "name": "CI",
        "run_number": 12,
        "run_attempt": 1,
        "event": "push",
        "status": status,
        "conclusion": "success" if status == "completed" else None,
        "head_branch": "main",
        "head_sha": "abc123",
        "actor": account(),
        "html_url": f"https://github.test/acme/widgets/actions/runs/{run_id}",
        "created_at": "2024-07-01T10:00:00Z",
        "updated_at": updated_at,
    }


def workflow_job(job_id: int = 500, run_id: int = 400) -> Payload:
    """Return a workflow job object."""
    return {
        "id": job_id,
        "run_id": run_id,
        "name": "test",
        "status": "completed",
        "conclusion": "success",
        "started_at": "2024-07-01T10:01:00Z",
        "completed_at": "2024-07-01T10:04:00Z",
        "runner_name": "runner-1",
        "steps": [{"name": "checkout", "status": "completed"}],
    }


def commit(sha: str, *, message: str = "Fix widgets\n\nDetails") -> Payload:
    """Return an item of the REST commit listing."""
    return {
        "sha": sha,
        "commit": {
            "message": message,
            "author": {"name": "Octo Cat", "date": "2024-07-01T09:00:00Z"},
            "committer": {"name": "Octo Cat", "date": "2024-07-01T09:01:00Z"},
        },
        "author": account(),
        "committer": account(8, "hubot"),
    }


def branch(name: str, sha: str = "abc123") -> Payload:
    """Return an item of the REST branch listing."""
    return {"name": name, "commit": {"sha": sha}, "protected": name == "main"}


def pr_file(filename: str, status: str = "modified") -> Payload:
    """Return an item of the pull request files listing."""
    return {
        "filename": filename,
        "status": status,
        "additions": 3,
        "deletions": 1,
        "changes": 4,
        "patch": "@@ -1 +1 @@",
    }


def webhook_payload(
    *,
    action: str | None = None,
    installation_id: int | None = INSTALLATION_ID,
    repository_id: int | None = REPOSITORY_ID,
    **objects: object,
) -> Payload:
    """Return a webhook body with routing fields and the given objects."""
    payload: Payload = dict(objects)
    if action is not None:
        payload["action"] = action
    if installation_id is not None:
        payload["installation"] = {"id": installation_id}
    if repository_id is not None:
        payload["repository"] = repository(repository_id)
    return payload


async def store_event(  # noqa: PLR0913
    session_factory: async_sessionmaker[AsyncSession],
    event_name: str,
    payload: Payload,
    *,
    delivery_id: str | None = None,
    state: WebhookProcessState = WebhookProcessState.PENDING,
    attempt_count: int = 0,
    next_attempt_at: dt.datetime | None = None,
    received_at: dt.datetime | None = None,
) -> RawWebhookEvent:
    """Insert a stored delivery as the receiver would have written it."""
    installation = payload.get("installation")
    repo = payload.get("repository")
    installation_id = installation.get("id") if isinstance(installation, dict) else None
    event = RawWebhookEvent(
        delivery_id=delivery_id or f"delivery-{next(_delivery_seq)}",
        event_name=event_name,
        action=payload.get("action"),
        installation_id=installation_id,
        repository_id=repo.get("id") if isinstance(repo, dict) else None,
        signature_valid=True,
        payload=payload,
        process_state=state.value,
        attempt_count=attempt_count,
        next_attempt_at=next_attempt_at,
        received_at=received_at or utcnow(),
    )
    async with session_factory() as session, session.begin():
        session.add(event)
    return event


async def connect_repository(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    installation_id: int = INSTALLATION_ID,
    repository_id: int = REPOSITORY_ID,
    full_name: str = FULL_NAME,
) -> None:
    """Record a connected repository without opening a bootstrap job."""
    connection = RepositoryConnection.from_full_name(
        installation_id, repository_id, full_name, default_branch="main"
    )
    async with session_factory() as session, session.begin():
        await record_repository(session, connection, utcnow())


__all__ = [
    "FULL_NAME",
    "INSTALLATION_ID",
    "REPOSITORY_ID",
    "account",
    "branch",
    "check_run",
    "commit",
    "connect_repository",
    "issue",
    "pr_file",
    "pull_request",
    "repository",
    "store_event",
    "webhook_payload",
    "workflow_job",
    "workflow_run",
]
