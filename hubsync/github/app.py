"""GitHub App authentication: app JWTs and installation access tokens."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
import typing as typ

import httpx
import jwt

from hubsync.common.time import parse_github_datetime, utcnow

from .client import API_VERSION, DEFAULT_API_URL
from .errors import GitHubAppTokenError, GitHubConfigError

if typ.TYPE_CHECKING:
    from hubsync.common.time import Clock

JWT_BACKDATE = dt.timedelta(seconds=60)
JWT_LIFETIME = dt.timedelta(minutes=10)

_HTTP_ERROR_STATUS_THRESHOLD = 400


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubAppConfig:
    """Identity and signing key of the GitHub App."""

    app_id: str
    private_key: str
    api_url: str = DEFAULT_API_URL

    @classmethod
    def from_env(cls) -> GitHubAppConfig:
        """Read ``HUBSYNC_GITHUB_APP_ID`` and ``HUBSYNC_GITHUB_APP_PRIVATE_KEY``.

        Keys stored in single-line secrets usually escape their newlines, so
        literal ``\\n`` sequences are expanded.
        """
        app_id = os.environ.get("HUBSYNC_GITHUB_APP_ID", "").strip()
        if not app_id:
            raise GitHubConfigError.missing("HUBSYNC_GITHUB_APP_ID")
        private_key = os.environ.get("HUBSYNC_GITHUB_APP_PRIVATE_KEY", "").strip()
        if not private_key:
            raise GitHubConfigError.missing("HUBSYNC_GITHUB_APP_PRIVATE_KEY")
        api_url = os.environ.get("HUBSYNC_GITHUB_API_URL", "").strip() or DEFAULT_API_URL
        return cls(
            app_id=app_id,
            private_key=private_key.replace("\\n", "\n"),
            api_url=api_url,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class InstallationToken:
    """Installation access token and its GitHub-side expiry."""

    token: str
    expires_at: dt.datetime


def create_app_jwt(config: GitHubAppConfig, *, now: dt.datetime) -> str:
    """Sign a short-lived RS256 JWT identifying the app.

    ``iat`` is backdated a minute to absorb clock drift between us and
    GitHub; ``exp`` sits at the ten-minute maximum GitHub accepts.
    """
    payload = {
        "iat": int((now - JWT_BACKDATE).timestamp()),
        "exp": int((now + JWT_LIFETIME).timestamp()),
        "iss": config.app_id,
    }
    try:
        return jwt.encode(payload, config.private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise GitHubConfigError.invalid_private_key() from exc


class InstallationTokenClient:
    """Exchange app JWTs for installation access tokens."""

    def __init__(
        self,
        config: GitHubAppConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Bind the app config, HTTP client and clock."""
        self._config = config
        self._client = http_client or httpx.AsyncClient(timeout=20.0)
        self._owns_client = http_client is None
        self._clock = clock

    async def aclose(self) -> None:
        """Close the underlying HTTP client when owned."""
        if self._owns_client:
            await self._client.aclose()

    async def create_installation_token(self, installation_id: int) -> InstallationToken:
        """Mint a fresh installation token.

        Raises
        ------
        GitHubAppTokenError
            If GitHub rejects the exchange or returns a malformed body.

        """
        app_jwt = create_app_jwt(self._config, now=self._clock())
        url = (
            f"{self._config.api_url.rstrip('/')}"
            f"/app/installations/{installation_id}/access_tokens"
        )
        response = await self._client.post(
            url,
            headers={
                "Authorization": f"Bearer {app_jwt}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
        )
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAppTokenError.exchange_failed(
                installation_id, response.status_code
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GitHubAppTokenError.malformed(installation_id) from exc
        if not isinstance(body, dict):
            raise GitHubAppTokenError.malformed(installation_id)
        token = body.get("token")
        raw_expiry = body.get("expires_at")
        if not isinstance(token, str) or not isinstance(raw_expiry, str):
            raise GitHubAppTokenError.malformed(installation_id)
        expires_at = parse_github_datetime(raw_expiry)
        if expires_at is None:
            raise GitHubAppTokenError.malformed(installation_id)
        return InstallationToken(token=token, expires_at=expires_at)


__all__ = [
    "GitHubAppConfig",
    "InstallationToken",
    "InstallationTokenClient",
    "create_app_jwt",
]
