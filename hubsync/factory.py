"""Builders that assemble sync services from environment configuration.

The Dramatiq actors, the worker loop and the operator CLI all need the same
credential and workflow wiring; they build it here from a session factory.

Usage
-----
Build a resolver and workflow for one event loop::

    from hubsync.factory import build_token_resolver, build_bootstrap_workflow

    resolver, minter = build_token_resolver(session_factory)
    workflow = build_bootstrap_workflow(session_factory, resolver, scheduler)

"""

from __future__ import annotations

import os
import typing as typ

from hubsync.bootstrap.file_sync import PullRequestFileSync
from hubsync.bootstrap.workflow import BootstrapWorkflow
from hubsync.config import BootstrapConfig
from hubsync.github.app import GitHubAppConfig, InstallationTokenClient
from hubsync.github.client import DEFAULT_API_URL
from hubsync.github.errors import GitHubConfigError
from hubsync.github.tokens import InstallationTokenCache, SqlUserTokenLookup, TokenResolver
from hubsync.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)


def github_api_url_from_env() -> str:
    """Return ``HUBSYNC_GITHUB_API_URL`` or the public API root."""
    return os.environ.get("HUBSYNC_GITHUB_API_URL", "").strip() or DEFAULT_API_URL


def build_installation_minter() -> InstallationTokenClient | None:
    """Return a token minter, or ``None`` when the GitHub App is not configured.

    Without an app only user OAuth tokens can be resolved; jobs that need
    an installation credential then fail with a ``no_installation`` error.
    """
    try:
        app_config = GitHubAppConfig.from_env()
    except GitHubConfigError as exc:
        log_warning(logger, "GitHub App disabled: %s", exc)
        return None
    return InstallationTokenClient(app_config)


def build_token_resolver(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cache: InstallationTokenCache | None = None,
) -> tuple[TokenResolver, InstallationTokenClient | None]:
    """Build a resolver reading user tokens from storage.

    The minter is returned too so the caller can close its HTTP client when
    the event loop that owns it finishes.
    """
    minter = build_installation_minter()
    resolver = TokenResolver(
        user_tokens=SqlUserTokenLookup(session_factory),
        minter=minter,
        cache=cache,
    )
    return (resolver, minter)


def build_bootstrap_workflow(
    session_factory: async_sessionmaker[AsyncSession],
    resolver: TokenResolver,
    scheduler: TaskScheduler | None,
) -> BootstrapWorkflow:
    """Build the bootstrap workflow with environment chunk settings."""
    return BootstrapWorkflow(
        session_factory,
        resolver=resolver,
        scheduler=scheduler,
        config=BootstrapConfig.from_env(),
        api_url=github_api_url_from_env(),
    )


def build_file_sync(
    session_factory: async_sessionmaker[AsyncSession], resolver: TokenResolver
) -> PullRequestFileSync:
    """Build the pull request file-diff sync."""
    return PullRequestFileSync(
        session_factory, resolver, api_url=github_api_url_from_env()
    )


__all__ = [
    "build_bootstrap_workflow",
    "build_file_sync",
    "build_installation_minter",
    "build_token_resolver",
    "github_api_url_from_env",
]
