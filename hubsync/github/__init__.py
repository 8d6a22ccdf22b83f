"""GitHub REST access: client, credentials and payload decoding."""

from __future__ import annotations

from .app import GitHubAppConfig, InstallationToken, InstallationTokenClient
from .client import GitHubResponse, GitHubRestClient, parse_next_link
from .errors import (
    GitHubAPIError,
    GitHubAppTokenError,
    GitHubConfigError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    NoGitHubTokenError,
    NoTokenReason,
)
from .tokens import (
    InstallationTokenCache,
    ResolvedToken,
    SqlUserTokenLookup,
    TokenResolver,
    TokenSource,
)

__all__ = [
    "GitHubAPIError",
    "GitHubAppConfig",
    "GitHubAppTokenError",
    "GitHubConfigError",
    "GitHubRateLimitError",
    "GitHubResponse",
    "GitHubResponseShapeError",
    "GitHubRestClient",
    "InstallationToken",
    "InstallationTokenCache",
    "InstallationTokenClient",
    "NoGitHubTokenError",
    "NoTokenReason",
    "ResolvedToken",
    "SqlUserTokenLookup",
    "TokenResolver",
    "TokenSource",
    "parse_next_link",
]
