"""Typed write models for the Silver cache.

Every writer (webhook handlers, bootstrap steps, file-diff sync) builds these
structs and hands them to :mod:`hubsync.silver.upsert`; field names match the
ORM columns one to one.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

import msgspec


class UserRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """GitHub identity keyed by ``github_user_id``."""

    github_user_id: int
    login: str
    avatar_url: str | None = None
    site_admin: bool = False
    user_type: str = "User"


class BranchRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Branch keyed by (repository, name)."""

    repository_id: int
    name: str
    head_sha: str | None = None
    protected: bool = False


class PullRequestRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Pull request keyed by (repository, number)."""

    repository_id: int
    number: int
    github_pr_id: int
    title: str
    state: str
    draft: bool = False
    body: str | None = None
    author_user_id: int | None = None
    head_ref: str | None = None
    head_sha: str | None = None
    base_ref: str | None = None
    mergeable_state: str | None = None
    merged_at: dt.datetime | None = None
    closed_at: dt.datetime | None = None
    github_created_at: dt.datetime | None = None
    github_updated_at: dt.datetime | None = None


class IssueRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Issue keyed by (repository, number)."""

    repository_id: int
    number: int
    github_issue_id: int
    title: str
    state: str
    body: str | None = None
    author_user_id: int | None = None
    label_names: list[str] = msgspec.field(default_factory=list)
    comment_count: int = 0
    closed_at: dt.datetime | None = None
    github_created_at: dt.datetime | None = None
    github_updated_at: dt.datetime | None = None


class CommitRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Commit keyed by (repository, sha)."""

    repository_id: int
    sha: str
    message_headline: str = ""
    author_user_id: int | None = None
    committer_user_id: int | None = None
    author_name: str | None = None
    authored_at: dt.datetime | None = None
    committed_at: dt.datetime | None = None


class CheckRunRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Check run keyed by (repository, check run id)."""

    repository_id: int
    github_check_run_id: int
    head_sha: str
    name: str
    status: str = "queued"
    conclusion: str | None = None
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    github_updated_at: dt.datetime | None = None


class WorkflowRunRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Workflow run keyed by (repository, run id)."""

    repository_id: int
    github_run_id: int
    workflow_id: int | None = None
    name: str | None = None
    run_number: int | None = None
    run_attempt: int = 1
    event: str | None = None
    status: str | None = None
    conclusion: str | None = None
    head_branch: str | None = None
    head_sha: str | None = None
    actor_user_id: int | None = None
    html_url: str | None = None
    github_created_at: dt.datetime | None = None
    github_updated_at: dt.datetime | None = None


class WorkflowJobRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """Workflow job keyed by (repository, job id)."""

    repository_id: int
    github_job_id: int
    github_run_id: int
    name: str
    status: str | None = None
    conclusion: str | None = None
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    runner_name: str | None = None
    steps: list[dict[str, typ.Any]] = msgspec.field(default_factory=list)
    github_updated_at: dt.datetime | None = None


class PullRequestFileRecord(msgspec.Struct, frozen=True, omit_defaults=True):
    """File diff keyed by (repository, PR number, head SHA, filename)."""

    repository_id: int
    pr_number: int
    head_sha: str
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    previous_filename: str | None = None
    patch: str | None = None


type SilverRecord = (
    UserRecord
    | BranchRecord
    | PullRequestRecord
    | IssueRecord
    | CommitRecord
    | CheckRunRecord
    | WorkflowRunRecord
    | WorkflowJobRecord
    | PullRequestFileRecord
)

__all__ = [
    "BranchRecord",
    "CheckRunRecord",
    "CommitRecord",
    "IssueRecord",
    "PullRequestFileRecord",
    "PullRequestRecord",
    "SilverRecord",
    "UserRecord",
    "WorkflowJobRecord",
    "WorkflowRunRecord",
]
