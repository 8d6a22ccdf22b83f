"""Credential selection for outbound GitHub calls.

A signed-in user's OAuth token is preferred because it carries the user's
own permissions; the installation token is the fallback. Installation tokens
are cached per installation and refreshed shortly before GitHub expires them.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import typing as typ

from sqlalchemy import select

from hubsync.common.time import utcnow
from hubsync.silver.storage import GitHubUserAccount

from .errors import GitHubAppTokenError, NoGitHubTokenError

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock

    from .app import InstallationToken

REFRESH_MARGIN = dt.timedelta(minutes=5)


class TokenSource(enum.StrEnum):
    """Where a resolved credential came from."""

    USER = "user"
    INSTALLATION = "installation"


@dataclasses.dataclass(frozen=True, slots=True)
class ResolvedToken:
    """A credential ready to hand to :class:`GitHubRestClient`."""

    token: str
    source: TokenSource


class UserTokenLookup(typ.Protocol):
    """Return a user's GitHub OAuth token, or ``None`` when not linked."""

    async def get_user_token(self, user_id: str) -> str | None:
        """Look up the OAuth token stored for ``user_id``."""
        ...


class InstallationTokenMinter(typ.Protocol):
    """Mint installation access tokens."""

    async def create_installation_token(
        self, installation_id: int
    ) -> InstallationToken:
        """Exchange an app JWT for a token scoped to ``installation_id``."""
        ...


class SqlUserTokenLookup:
    """Read OAuth tokens from the ``github_user_accounts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for lookups."""
        self._session_factory = session_factory

    async def get_user_token(self, user_id: str) -> str | None:
        """Return the stored access token for ``user_id``."""
        async with self._session_factory() as session:
            return await session.scalar(
                select(GitHubUserAccount.access_token).where(
                    GitHubUserAccount.user_id == user_id
                )
            )


class InstallationTokenCache:
    """In-memory map of installation id to its current access token.

    Concurrent refreshes for the same installation both store a valid token,
    so the last write simply wins.
    """

    def __init__(self, *, refresh_margin: dt.timedelta = REFRESH_MARGIN) -> None:
        """Create an empty cache."""
        self._tokens: dict[int, InstallationToken] = {}
        self._refresh_margin = refresh_margin

    def get(self, installation_id: int, *, now: dt.datetime) -> InstallationToken | None:
        """Return a cached token that stays valid past the refresh margin."""
        cached = self._tokens.get(installation_id)
        if cached is None or cached.expires_at - self._refresh_margin <= now:
            return None
        return cached

    def put(self, installation_id: int, token: InstallationToken) -> None:
        """Store ``token`` for ``installation_id``."""
        self._tokens[installation_id] = token

    def invalidate(self, installation_id: int) -> None:
        """Forget the token for ``installation_id``."""
        self._tokens.pop(installation_id, None)

    def clear(self) -> None:
        """Forget every cached token."""
        self._tokens.clear()

    def __len__(self) -> int:
        """Return the number of cached installations."""
        return len(self._tokens)


class TokenResolver:
    """Pick the best credential for a (user, installation) pair."""

    def __init__(
        self,
        *,
        user_tokens: UserTokenLookup,
        minter: InstallationTokenMinter | None,
        cache: InstallationTokenCache | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Wire the token sources and the installation token cache.

        ``minter`` may be ``None`` when the app is not configured; only user
        tokens can then be resolved.
        """
        self._user_tokens = user_tokens
        self._minter = minter
        self.cache = cache if cache is not None else InstallationTokenCache()
        self._clock = clock

    async def user_token(self, user_id: str) -> str:
        """Return the OAuth token for ``user_id`` or raise."""
        token = await self._user_tokens.get_user_token(user_id)
        if not token:
            raise NoGitHubTokenError.no_user_token(user_id)
        return token

    async def installation_token(self, installation_id: int) -> str:
        """Return a cached or freshly minted installation token.

        Raises
        ------
        NoGitHubTokenError
            If GitHub refuses to mint a token for the installation.
        GitHubAppTokenError
            For other exchange failures, which callers treat as upstream
            errors.

        """
        now = self._clock()
        cached = self.cache.get(installation_id, now=now)
        if cached is not None:
            return cached.token
        if self._minter is None:
            raise NoGitHubTokenError.no_installation()

        try:
            minted = await self._minter.create_installation_token(installation_id)
        except GitHubAppTokenError as exc:
            if exc.status_code in {403, 404}:
                self.cache.invalidate(installation_id)
                raise NoGitHubTokenError.installation_unavailable(
                    installation_id, exc.status_code
                ) from exc
            raise
        self.cache.put(installation_id, minted)
        return minted.token

    async def resolve(
        self, user_id: str | None, installation_id: int | None
    ) -> ResolvedToken:
        """Return the user's token when available, else the installation's."""
        if user_id:
            token = await self._user_tokens.get_user_token(user_id)
            if token:
                return ResolvedToken(token=token, source=TokenSource.USER)
        if installation_id is None or installation_id <= 0:
            if user_id:
                raise NoGitHubTokenError.no_user_token(user_id)
            raise NoGitHubTokenError.no_installation()
        token = await self.installation_token(installation_id)
        return ResolvedToken(token=token, source=TokenSource.INSTALLATION)


__all__ = [
    "REFRESH_MARGIN",
    "InstallationTokenCache",
    "InstallationTokenMinter",
    "ResolvedToken",
    "SqlUserTokenLookup",
    "TokenResolver",
    "TokenSource",
    "UserTokenLookup",
]
