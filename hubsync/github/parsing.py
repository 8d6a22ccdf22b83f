"""Decode GitHub REST and webhook objects into Silver records.

The REST listings and webhook payloads share object shapes (a webhook's
``pull_request`` is the same object ``GET /pulls`` returns), so both paths
decode through the msgspec structs below. Unknown fields are ignored.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

import msgspec

from hubsync.common.time import parse_github_datetime
from hubsync.silver.records import (
    BranchRecord,
    CheckRunRecord,
    CommitRecord,
    IssueRecord,
    PullRequestFileRecord,
    PullRequestRecord,
    UserRecord,
    WorkflowJobRecord,
    WorkflowRunRecord,
)

from .errors import GitHubResponseShapeError

_USER_TYPES = frozenset({"User", "Bot", "Organization"})


class GitHubAccount(msgspec.Struct, frozen=True):
    """``user``/``actor``/``author`` object."""

    id: int
    login: str
    avatar_url: str | None = None
    site_admin: bool = False
    type: str = "User"


class GitHubGitRef(msgspec.Struct, frozen=True):
    """``head``/``base`` of a pull request."""

    ref: str | None = None
    sha: str | None = None


class GitHubBranchCommit(msgspec.Struct, frozen=True):
    """Commit pointer inside a branch listing."""

    sha: str


class GitHubBranch(msgspec.Struct, frozen=True):
    """Item of ``GET /repos/{repo}/branches``."""

    name: str
    commit: GitHubBranchCommit | None = None
    protected: bool = False


class GitHubPullRequest(msgspec.Struct, frozen=True):
    """Pull request object."""

    id: int
    number: int
    title: str
    state: str
    draft: bool = False
    body: str | None = None
    user: GitHubAccount | None = None
    head: GitHubGitRef | None = None
    base: GitHubGitRef | None = None
    mergeable_state: str | None = None
    merged_at: str | None = None
    closed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class GitHubLabel(msgspec.Struct, frozen=True):
    """Issue label."""

    name: str


class GitHubIssue(msgspec.Struct, frozen=True):
    """Issue object; ``pull_request`` is set when the item is really a PR."""

    id: int
    number: int
    title: str
    state: str
    body: str | None = None
    user: GitHubAccount | None = None
    labels: list[GitHubLabel] = msgspec.field(default_factory=list)
    comments: int = 0
    closed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    pull_request: dict[str, typ.Any] | None = None


class GitHubGitActor(msgspec.Struct, frozen=True):
    """Git-level author/committer (name, email, date)."""

    name: str | None = None
    email: str | None = None
    date: str | None = None


class GitHubCommitDetail(msgspec.Struct, frozen=True):
    """``commit`` object nested in a REST commit listing."""

    message: str = ""
    author: GitHubGitActor | None = None
    committer: GitHubGitActor | None = None


class GitHubCommit(msgspec.Struct, frozen=True):
    """Item of ``GET /repos/{repo}/commits``."""

    sha: str
    commit: GitHubCommitDetail
    author: GitHubAccount | None = None
    committer: GitHubAccount | None = None


class GitHubPushAuthor(msgspec.Struct, frozen=True):
    """Author of a commit inside a push payload."""

    name: str | None = None
    email: str | None = None
    username: str | None = None


class GitHubPushCommit(msgspec.Struct, frozen=True):
    """Commit inside a ``push`` webhook payload."""

    id: str
    message: str = ""
    timestamp: str | None = None
    author: GitHubPushAuthor | None = None


class GitHubCheckRun(msgspec.Struct, frozen=True):
    """Check run object."""

    id: int
    name: str
    head_sha: str
    status: str | None = None
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class GitHubWorkflowRun(msgspec.Struct, frozen=True):
    """Workflow run object."""

    id: int
    workflow_id: int | None = None
    name: str | None = None
    run_number: int | None = None
    run_attempt: int | None = None
    event: str | None = None
    status: str | None = None
    conclusion: str | None = None
    head_branch: str | None = None
    head_sha: str | None = None
    actor: GitHubAccount | None = None
    html_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class GitHubWorkflowJob(msgspec.Struct, frozen=True):
    """Workflow job object."""

    id: int
    run_id: int
    name: str
    status: str | None = None
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    runner_name: str | None = None
    steps: list[dict[str, typ.Any]] | None = None


class GitHubPullRequestFile(msgspec.Struct, frozen=True):
    """Item of ``GET /repos/{repo}/pulls/{n}/files``."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    previous_filename: str | None = None
    patch: str | None = None


def decode[StructT: msgspec.Struct](
    raw: object, model: type[StructT], *, kind: str
) -> StructT:
    """Convert a decoded JSON value into ``model``.

    Raises
    ------
    GitHubResponseShapeError
        If the value does not match the schema.

    """
    try:
        return msgspec.convert(raw, type=model, strict=False)
    except msgspec.ValidationError as exc:
        raise GitHubResponseShapeError.invalid(kind, str(exc)) from exc


class UserCollector:
    """Deduplicate accounts seen while parsing, for one batch upsert later."""

    def __init__(self) -> None:
        """Start with no observed accounts."""
        self._users: dict[int, UserRecord] = {}

    def observe(self, account: GitHubAccount | None) -> int | None:
        """Remember ``account`` and return its GitHub id."""
        if account is None:
            return None
        self._users[account.id] = UserRecord(
            github_user_id=account.id,
            login=account.login,
            avatar_url=account.avatar_url,
            site_admin=account.site_admin,
            user_type=account.type if account.type in _USER_TYPES else "User",
        )
        return account.id

    def records(self) -> list[UserRecord]:
        """Return each distinct account once."""
        return list(self._users.values())

    def __len__(self) -> int:
        """Return the number of distinct accounts."""
        return len(self._users)


def _latest(*values: str | None) -> dt.datetime | None:
    stamps = [stamp for stamp in map(parse_github_datetime, values) if stamp]
    return max(stamps) if stamps else None


def branch_record(repository_id: int, branch: GitHubBranch) -> BranchRecord:
    """Build a branch record from a branch listing item."""
    return BranchRecord(
        repository_id=repository_id,
        name=branch.name,
        head_sha=branch.commit.sha if branch.commit else None,
        protected=branch.protected,
    )


def pull_request_record(
    repository_id: int, pr: GitHubPullRequest, users: UserCollector
) -> PullRequestRecord:
    """Build a pull request record, collecting its author."""
    return PullRequestRecord(
        repository_id=repository_id,
        number=pr.number,
        github_pr_id=pr.id,
        title=pr.title,
        state="open" if pr.state == "open" else "closed",
        draft=pr.draft,
        body=pr.body,
        author_user_id=users.observe(pr.user),
        head_ref=pr.head.ref if pr.head else None,
        head_sha=pr.head.sha if pr.head else None,
        base_ref=pr.base.ref if pr.base else None,
        mergeable_state=pr.mergeable_state,
        merged_at=parse_github_datetime(pr.merged_at),
        closed_at=parse_github_datetime(pr.closed_at),
        github_created_at=parse_github_datetime(pr.created_at),
        github_updated_at=parse_github_datetime(pr.updated_at),
    )


def is_pull_request_issue(raw: dict[str, typ.Any]) -> bool:
    """Return whether an issues-listing item is actually a pull request."""
    return "pull_request" in raw


def issue_record(
    repository_id: int, issue: GitHubIssue, users: UserCollector
) -> IssueRecord:
    """Build an issue record, collecting its author."""
    return IssueRecord(
        repository_id=repository_id,
        number=issue.number,
        github_issue_id=issue.id,
        title=issue.title,
        state="open" if issue.state == "open" else "closed",
        body=issue.body,
        author_user_id=users.observe(issue.user),
        label_names=[label.name for label in issue.labels],
        comment_count=issue.comments,
        closed_at=parse_github_datetime(issue.closed_at),
        github_created_at=parse_github_datetime(issue.created_at),
        github_updated_at=parse_github_datetime(issue.updated_at),
    )


def _headline(message: str) -> str:
    return message.split("\n", 1)[0].strip()


def commit_record(
    repository_id: int, commit: GitHubCommit, users: UserCollector
) -> CommitRecord:
    """Build a commit record, collecting its author and committer."""
    git_author = commit.commit.author
    git_committer = commit.commit.committer
    return CommitRecord(
        repository_id=repository_id,
        sha=commit.sha,
        message_headline=_headline(commit.commit.message),
        author_user_id=users.observe(commit.author),
        committer_user_id=users.observe(commit.committer),
        author_name=git_author.name if git_author else None,
        authored_at=parse_github_datetime(git_author.date if git_author else None),
        committed_at=parse_github_datetime(
            git_committer.date if git_committer else None
        ),
    )


def push_commit_record(repository_id: int, commit: GitHubPushCommit) -> CommitRecord:
    """Build a commit record from a push payload commit."""
    timestamp = parse_github_datetime(commit.timestamp)
    return CommitRecord(
        repository_id=repository_id,
        sha=commit.id,
        message_headline=_headline(commit.message),
        author_name=commit.author.name if commit.author else None,
        authored_at=timestamp,
        committed_at=timestamp,
    )


def check_run_record(repository_id: int, run: GitHubCheckRun) -> CheckRunRecord:
    """Build a check run record.

    Check runs carry no ``updated_at``; the later of start and completion
    stands in so a late ``in_progress`` delivery cannot undo a completion.
    """
    return CheckRunRecord(
        repository_id=repository_id,
        github_check_run_id=run.id,
        head_sha=run.head_sha,
        name=run.name,
        status=run.status or "queued",
        conclusion=run.conclusion,
        started_at=parse_github_datetime(run.started_at),
        completed_at=parse_github_datetime(run.completed_at),
        github_updated_at=_latest(run.started_at, run.completed_at),
    )


def workflow_run_record(
    repository_id: int, run: GitHubWorkflowRun, users: UserCollector
) -> WorkflowRunRecord:
    """Build a workflow run record, collecting its actor."""
    return WorkflowRunRecord(
        repository_id=repository_id,
        github_run_id=run.id,
        workflow_id=run.workflow_id,
        name=run.name,
        run_number=run.run_number,
        run_attempt=run.run_attempt or 1,
        event=run.event,
        status=run.status,
        conclusion=run.conclusion,
        head_branch=run.head_branch,
        head_sha=run.head_sha,
        actor_user_id=users.observe(run.actor),
        html_url=run.html_url,
        github_created_at=parse_github_datetime(run.created_at),
        github_updated_at=parse_github_datetime(run.updated_at),
    )


def workflow_job_record(repository_id: int, job: GitHubWorkflowJob) -> WorkflowJobRecord:
    """Build a workflow job record."""
    return WorkflowJobRecord(
        repository_id=repository_id,
        github_job_id=job.id,
        github_run_id=job.run_id,
        name=job.name,
        status=job.status,
        conclusion=job.conclusion,
        started_at=parse_github_datetime(job.started_at),
        completed_at=parse_github_datetime(job.completed_at),
        runner_name=job.runner_name,
        steps=list(job.steps or []),
        github_updated_at=_latest(job.started_at, job.completed_at),
    )


def pull_request_file_record(
    repository_id: int, pr_number: int, head_sha: str, item: GitHubPullRequestFile
) -> PullRequestFileRecord:
    """Build a PR file record for the diff at ``head_sha``."""
    return PullRequestFileRecord(
        repository_id=repository_id,
        pr_number=pr_number,
        head_sha=head_sha,
        filename=item.filename,
        status=item.status,
        additions=item.additions,
        deletions=item.deletions,
        changes=item.changes,
        previous_filename=item.previous_filename,
        patch=item.patch,
    )


__all__ = [
    "GitHubAccount",
    "GitHubBranch",
    "GitHubCheckRun",
    "GitHubCommit",
    "GitHubIssue",
    "GitHubPullRequest",
    "GitHubPullRequestFile",
    "GitHubPushCommit",
    "GitHubWorkflowJob",
    "GitHubWorkflowRun",
    "UserCollector",
    "branch_record",
    "check_run_record",
    "commit_record",
    "decode",
    "is_pull_request_issue",
    "issue_record",
    "pull_request_file_record",
    "pull_request_record",
    "push_commit_record",
    "workflow_job_record",
    "workflow_run_record",
]
