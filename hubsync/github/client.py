"""Thin authenticated wrapper over the GitHub REST API.

The client attaches credentials and versioning headers, resolves relative
paths against a fixed base URL, extracts the ``rel="next"`` pagination link
and turns throttling responses into :class:`GitHubRateLimitError`. It never
retries; backoff belongs to whichever orchestrator called it.
"""

from __future__ import annotations

import dataclasses
import re
import typing as typ

import httpx

from hubsync.common.time import to_epoch_ms, utcnow

from .errors import GitHubAPIError, GitHubRateLimitError, GitHubResponseShapeError

if typ.TYPE_CHECKING:
    import datetime as dt

    from hubsync.common.time import Clock

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
RATE_LIMIT_FALLBACK_MS = 60_000

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429
_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


def parse_next_link(link_header: str | None) -> str | None:
    """Return the ``rel="next"`` URL from a ``Link`` header, if any."""
    if not link_header:
        return None
    match = _NEXT_LINK_RE.search(link_header)
    return match.group(1) if match else None


def _header_int(headers: httpx.Headers, name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def is_rate_limited(response: httpx.Response) -> bool:
    """Return whether ``response`` signals throttling.

    GitHub uses 429 for secondary limits and 403 for both primary limits
    (with ``X-RateLimit-Remaining: 0``) and abuse detection (with
    ``Retry-After``). Other 403s are permission failures.
    """
    if response.status_code == _HTTP_TOO_MANY_REQUESTS:
        return True
    if response.status_code != _HTTP_FORBIDDEN:
        return False
    remaining = _header_int(response.headers, "x-ratelimit-remaining")
    return remaining == 0 or "retry-after" in response.headers


def compute_retry_after_ms(headers: httpx.Headers, now: dt.datetime) -> int:
    """Derive the wait before retrying a throttled request.

    ``Retry-After`` (seconds) wins; otherwise the distance to
    ``X-RateLimit-Reset`` (epoch seconds) is used; otherwise a fixed
    fallback.
    """
    retry_after = _header_int(headers, "retry-after")
    if retry_after is not None:
        return max(0, retry_after * 1000)
    reset_epoch = _header_int(headers, "x-ratelimit-reset")
    if reset_epoch is not None:
        return max(0, reset_epoch * 1000 - to_epoch_ms(now))
    return RATE_LIMIT_FALLBACK_MS


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubResponse:
    """Decoded JSON body plus the pagination cursor of one response."""

    status_code: int
    url: str
    data: typ.Any
    next_url: str | None = None

    def as_list(self) -> list[dict[str, typ.Any]]:
        """Return the body as a list of objects or raise on shape drift."""
        if not isinstance(self.data, list):
            raise GitHubResponseShapeError.expected("array", self.url)
        return [item for item in self.data if isinstance(item, dict)]

    def as_object(self) -> dict[str, typ.Any]:
        """Return the body as an object or raise on shape drift."""
        if not isinstance(self.data, dict):
            raise GitHubResponseShapeError.expected("object", self.url)
        return self.data


class GitHubRestClient:
    """Async REST client bound to a single credential.

    Parameters
    ----------
    token
        User OAuth token or installation access token.
    base_url
        API root; absolute URLs passed to the request methods bypass it,
        which is how ``Link`` header cursors are followed.
    http_client
        Optional shared :class:`httpx.AsyncClient`. When omitted the client
        creates and owns one.
    clock
        Source of "now" for rate-limit reset arithmetic.

    """

    def __init__(  # noqa: PLR0913
        self,
        token: str,
        *,
        base_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = 20.0,
        user_agent: str = "hubsync/0.1",
        clock: Clock = utcnow,
    ) -> None:
        """Store credentials and build the underlying HTTP client if needed."""
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": user_agent,
        }
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = http_client is None

    async def __aenter__(self) -> typ.Self:
        """Return the client for ``async with`` usage."""
        return self

    async def __aexit__(self, *_exc: object) -> None:
        """Close the owned HTTP client."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client when owned."""
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, path: str) -> str:
        """Resolve ``path`` against the base URL unless it is already absolute."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get(self, path: str) -> GitHubResponse:
        """GET ``path`` and return its JSON body and next-page cursor."""
        return await self._request("GET", path)

    async def get_optional(self, path: str) -> GitHubResponse | None:
        """GET ``path`` but map a 404 to ``None``."""
        try:
            return await self._request("GET", path)
        except GitHubAPIError as exc:
            if exc.status_code == _HTTP_NOT_FOUND:
                return None
            raise

    async def post(self, path: str, body: dict[str, typ.Any]) -> GitHubResponse:
        """POST a JSON ``body`` to ``path``."""
        return await self._request("POST", path, json=body)

    async def _request(
        self, method: str, path: str, *, json: dict[str, typ.Any] | None = None
    ) -> GitHubResponse:
        url = self.url_for(path)
        response = await self._client.request(
            method, url, headers=self._headers, json=json
        )
        if is_rate_limited(response):
            raise GitHubRateLimitError(
                compute_retry_after_ms(response.headers, self._clock()),
                status_code=response.status_code,
                url=url,
            )
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(response.status_code, url)

        try:
            data = response.json() if response.content else None
        except ValueError as exc:
            raise GitHubAPIError.invalid_body(response.status_code, url) from exc
        return GitHubResponse(
            status_code=response.status_code,
            url=url,
            data=data,
            next_url=parse_next_link(response.headers.get("link")),
        )


__all__ = [
    "API_VERSION",
    "DEFAULT_API_URL",
    "RATE_LIMIT_FALLBACK_MS",
    "GitHubResponse",
    "GitHubRestClient",
    "compute_retry_after_ms",
    "is_rate_limited",
    "parse_next_link",
]
