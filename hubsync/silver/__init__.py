"""Silver layer: normalized GitHub records and their idempotent upserts."""

from __future__ import annotations

from .errors import UpsertError, UpsertErrorReason
from .records import (
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
from .storage import (
    Branch,
    CheckRun,
    Commit,
    GitHubInstallation,
    GitHubRepository,
    GitHubUser,
    GitHubUserAccount,
    Issue,
    PullRequest,
    PullRequestFile,
    WorkflowJob,
    WorkflowRun,
    init_silver_storage,
)
from .upsert import (
    UpsertCounts,
    UpsertOutcome,
    find_by_natural_key,
    range_query,
    upsert_record,
    upsert_records,
)

__all__ = [
    "Branch",
    "BranchRecord",
    "CheckRun",
    "CheckRunRecord",
    "Commit",
    "CommitRecord",
    "GitHubInstallation",
    "GitHubRepository",
    "GitHubUser",
    "GitHubUserAccount",
    "Issue",
    "IssueRecord",
    "PullRequest",
    "PullRequestFile",
    "PullRequestFileRecord",
    "PullRequestRecord",
    "UpsertCounts",
    "UpsertError",
    "UpsertErrorReason",
    "UpsertOutcome",
    "UserRecord",
    "WorkflowJob",
    "WorkflowJobRecord",
    "WorkflowRun",
    "WorkflowRunRecord",
    "find_by_natural_key",
    "init_silver_storage",
    "range_query",
    "upsert_record",
    "upsert_records",
]
