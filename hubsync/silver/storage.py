"""Silver tables: the normalized GitHub cache read by the dashboard."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from hubsync.bronze.storage import Base, UTCDateTime
from hubsync.common.time import utcnow

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class GitHubInstallation(Base):
    """GitHub App installation the engine can mint tokens for."""

    __tablename__ = "github_installations"

    installation_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    account_login: Mapped[str | None] = mapped_column(String(255), default=None)
    account_type: Mapped[str | None] = mapped_column(String(32), default=None)
    suspended_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    last_checked_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class GitHubRepository(Base):
    """Repository connected to the cache."""

    __tablename__ = "github_repositories"
    __table_args__ = (Index("ix_github_repositories_installation", "installation_id"),)

    repository_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    installation_id: Mapped[int] = mapped_column(BigInteger)
    owner: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(512), unique=True)
    default_branch: Mapped[str | None] = mapped_column(String(255), default=None)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    connected_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class GitHubUserAccount(Base):
    """OAuth token linked to a signed-in dashboard user."""

    __tablename__ = "github_user_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    github_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    access_token: Mapped[str] = mapped_column(String(255))
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class GitHubUser(Base):
    """GitHub identity seen as an author, actor or committer."""

    __tablename__ = "github_users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    github_user_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    login: Mapped[str] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(String(512), default=None)
    site_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    user_type: Mapped[str] = mapped_column(String(32), default="User")
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Branch(Base):
    """Branch head as last reported by GitHub."""

    __tablename__ = "github_branches"
    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="uq_branches_repo_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    protected: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class PullRequest(Base):
    """Pull request snapshot."""

    __tablename__ = "github_pull_requests"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_requests_repo_number"),
        Index("ix_pull_requests_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    number: Mapped[int] = mapped_column(Integer)
    github_pr_id: Mapped[int] = mapped_column(BigInteger)
    title: Mapped[str] = mapped_column(String(1024))
    state: Mapped[str] = mapped_column(String(16))
    draft: Mapped[bool] = mapped_column(Boolean, default=False)
    body: Mapped[str | None] = mapped_column(Text(), default=None)
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    head_ref: Mapped[str | None] = mapped_column(String(255), default=None)
    head_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    base_ref: Mapped[str | None] = mapped_column(String(255), default=None)
    mergeable_state: Mapped[str | None] = mapped_column(String(32), default=None)
    merged_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    github_created_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class Issue(Base):
    """Issue snapshot; pull requests listed by the issues API are excluded."""

    __tablename__ = "github_issues"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_issues_repo_number"),
        Index("ix_issues_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    number: Mapped[int] = mapped_column(Integer)
    github_issue_id: Mapped[int] = mapped_column(BigInteger)
    title: Mapped[str] = mapped_column(String(1024))
    state: Mapped[str] = mapped_column(String(16))
    body: Mapped[str | None] = mapped_column(Text(), default=None)
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    label_names: Mapped[list[str]] = mapped_column(JSON, default=list)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    github_created_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class Commit(Base):
    """Recent commit on a branch."""

    __tablename__ = "github_commits"
    __table_args__ = (
        UniqueConstraint("repository_id", "sha", name="uq_commits_repo_sha"),
        Index("ix_commits_repo_time", "repository_id", "committed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    sha: Mapped[str] = mapped_column(String(64))
    message_headline: Mapped[str] = mapped_column(String(1024), default="")
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    committer_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    author_name: Mapped[str | None] = mapped_column(String(255), default=None)
    authored_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    committed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class CheckRun(Base):
    """Check run attached to a head SHA."""

    __tablename__ = "github_check_runs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_check_run_id", name="uq_check_runs_repo_id"
        ),
        Index("ix_check_runs_repo_sha", "repository_id", "head_sha"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    github_check_run_id: Mapped[int] = mapped_column(BigInteger)
    head_sha: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), default="queued")
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class WorkflowRun(Base):
    """GitHub Actions workflow run."""

    __tablename__ = "github_workflow_runs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_run_id", name="uq_workflow_runs_repo_id"
        ),
        Index("ix_workflow_runs_repo_updated", "repository_id", "github_updated_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    github_run_id: Mapped[int] = mapped_column(BigInteger)
    workflow_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    name: Mapped[str | None] = mapped_column(String(255), default=None)
    run_number: Mapped[int | None] = mapped_column(Integer, default=None)
    run_attempt: Mapped[int] = mapped_column(Integer, default=1)
    event: Mapped[str | None] = mapped_column(String(64), default=None)
    status: Mapped[str | None] = mapped_column(String(32), default=None)
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    head_branch: Mapped[str | None] = mapped_column(String(255), default=None)
    head_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    html_url: Mapped[str | None] = mapped_column(String(512), default=None)
    github_created_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class WorkflowJob(Base):
    """Job belonging to a workflow run."""

    __tablename__ = "github_workflow_jobs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_job_id", name="uq_workflow_jobs_repo_id"
        ),
        Index("ix_workflow_jobs_run", "repository_id", "github_run_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    github_job_id: Mapped[int] = mapped_column(BigInteger)
    github_run_id: Mapped[int] = mapped_column(BigInteger)
    name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str | None] = mapped_column(String(32), default=None)
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    runner_name: Mapped[str | None] = mapped_column(String(255), default=None)
    steps: Mapped[list[dict[str, typ.Any]]] = mapped_column(JSON, default=list)
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class PullRequestFile(Base):
    """File-level diff of a pull request at a given head SHA."""

    __tablename__ = "github_pull_request_files"
    __table_args__ = (
        UniqueConstraint(
            "repository_id",
            "pr_number",
            "head_sha",
            "filename",
            name="uq_pr_files_repo_pr_sha_file",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    pr_number: Mapped[int] = mapped_column(Integer)
    head_sha: Mapped[str] = mapped_column(String(64))
    filename: Mapped[str] = mapped_column(String(1024))
    status: Mapped[str] = mapped_column(String(32))
    additions: Mapped[int] = mapped_column(Integer, default=0)
    deletions: Mapped[int] = mapped_column(Integer, default=0)
    changes: Mapped[int] = mapped_column(Integer, default=0)
    previous_filename: Mapped[str | None] = mapped_column(String(1024), default=None)
    patch: Mapped[str | None] = mapped_column(Text(), default=None)


async def init_silver_storage(engine: AsyncEngine) -> None:
    """Create Silver tables if they do not yet exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
