"""Repository bootstrap: connection, job journal and chunked backfill steps."""

from __future__ import annotations

from .connect import ConnectResult, RepositoryConnection, RepositoryConnector
from .errors import BootstrapStepError, SyncJobNotFoundError
from .journal import STEP_ORDER, BootstrapStep, StepResult
from .storage import (
    TERMINAL_STATES,
    SyncJob,
    SyncJobState,
    bootstrap_lock_key,
    init_bootstrap_storage,
)

__all__ = [
    "STEP_ORDER",
    "TERMINAL_STATES",
    "BootstrapStep",
    "BootstrapStepError",
    "ConnectResult",
    "RepositoryConnection",
    "RepositoryConnector",
    "StepResult",
    "SyncJob",
    "SyncJobNotFoundError",
    "SyncJobState",
    "bootstrap_lock_key",
    "init_bootstrap_storage",
]
