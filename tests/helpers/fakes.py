"""In-memory stand-ins for GitHub, the task queue and credentials."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

import httpx

from hubsync.github.app import InstallationToken
from hubsync.github.errors import GitHubAppTokenError

if typ.TYPE_CHECKING:
    from hubsync.tasks.scheduler import FileSyncTarget

API_URL = "https://api.github.test"
FIXED_NOW = dt.datetime(2024, 7, 1, 12, 0, tzinfo=dt.UTC)


@dc.dataclass(frozen=True, slots=True)
class CannedResponse:
    """Status, JSON body and headers of one fake GitHub answer."""

    status: int = 200
    body: object = None
    headers: dict[str, str] = dc.field(default_factory=dict)

    def build(self) -> httpx.Response:
        """Return a fresh response; httpx responses are single use."""
        return httpx.Response(self.status, json=self.body, headers=self.headers)


type Route = CannedResponse | list[CannedResponse]


@dc.dataclass(slots=True)
class RecordingScheduler:
    """TaskScheduler that remembers what it was asked to run."""

    bootstraps: list[tuple[str, int]] = dc.field(default_factory=list)
    file_syncs: list[tuple[FileSyncTarget, int]] = dc.field(default_factory=list)

    def schedule_bootstrap(self, lock_key: str, *, delay_ms: int = 0) -> None:
        """Record a bootstrap request."""
        self.bootstraps.append((lock_key, delay_ms))

    def schedule_file_sync(self, target: FileSyncTarget, *, delay_ms: int = 0) -> None:
        """Record a file-diff sync request."""
        self.file_syncs.append((target, delay_ms))

    @property
    def bootstrap_keys(self) -> list[str]:
        """Lock keys scheduled, in order."""
        return [key for key, _ in self.bootstraps]


class FakeGitHub:
    """Route GitHub REST requests to canned responses by path and query.

    A route holding a list answers with its items in turn and repeats the
    last one. Unknown paths answer 404.
    """

    def __init__(self, base_url: str = API_URL) -> None:
        """Start with no routes."""
        self.base_url = base_url
        self.routes: dict[str, Route] = {}
        self.requests: list[httpx.Request] = []

    def url(self, path: str) -> str:
        """Return the absolute URL of ``path``."""
        return f"{self.base_url}{path}"

    def add(
        self,
        path: str,
        body: object = None,
        *,
        status: int = 200,
        headers: dict[str, str] | None = None,
        next_path: str | None = None,
    ) -> None:
        """Answer ``path`` (including its query) with ``body``."""
        response_headers = dict(headers or {})
        if next_path is not None:
            response_headers["link"] = f'<{self.url(next_path)}>; rel="next"'
        self.routes[path] = CannedResponse(status, body, response_headers)

    def add_sequence(self, path: str, *responses: CannedResponse) -> None:
        """Answer ``path`` with ``responses`` in order."""
        self.routes[path] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        """MockTransport entry point."""
        self.requests.append(request)
        route = self.routes.get(request.url.raw_path.decode())
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(route, list):
            canned = route.pop(0) if len(route) > 1 else route[0]
            return canned.build()
        return route.build()

    def client(self) -> httpx.AsyncClient:
        """Return an HTTP client served by this fake."""
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def paths(self) -> list[str]:
        """Paths requested so far, in order."""
        return [request.url.raw_path.decode() for request in self.requests]


@dc.dataclass(slots=True)
class StaticUserTokens:
    """UserTokenLookup backed by a dict."""

    tokens: dict[str, str] = dc.field(default_factory=dict)

    async def get_user_token(self, user_id: str) -> str | None:
        """Return the token stored for ``user_id``."""
        return self.tokens.get(user_id)


@dc.dataclass(slots=True)
class FakeMinter:
    """InstallationTokenMinter counting calls and failing on demand."""

    lifetime: dt.timedelta = dt.timedelta(hours=1)
    now: dt.datetime = FIXED_NOW
    failures: dict[int, int] = dc.field(default_factory=dict)
    calls: list[int] = dc.field(default_factory=list)

    async def create_installation_token(
        self, installation_id: int
    ) -> InstallationToken:
        """Return ``inst-{id}-{n}`` or raise the configured HTTP failure."""
        self.calls.append(installation_id)
        status = self.failures.get(installation_id)
        if status is not None:
            raise GitHubAppTokenError.exchange_failed(installation_id, status)
        return InstallationToken(
            token=f"inst-{installation_id}-{len(self.calls)}",
            expires_at=self.now + self.lifetime,
        )


class MutableClock:
    """Clock whose time the test moves by hand."""

    def __init__(self, now: dt.datetime = FIXED_NOW) -> None:
        """Start at ``now``."""
        self.now = now

    def __call__(self) -> dt.datetime:
        """Return the current fake time."""
        return self.now

    def advance(self, **delta: float) -> dt.datetime:
        """Move forward by a ``timedelta(**delta)`` and return the new time."""
        self.now += dt.timedelta(**delta)
        return self.now


@dc.dataclass(slots=True)
class LoggedLine:
    """One captured log call."""

    level: object
    message: str
    exc_info: object | None = None


@dc.dataclass(slots=True)
class RecordingLogger:
    """Logger double matching the ``log`` signature hubsync uses."""

    lines: list[LoggedLine] = dc.field(default_factory=list)

    def log(
        self,
        level: object,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str | None:
        """Capture the call."""
        del stack_info
        self.lines.append(LoggedLine(level, message, exc_info))
        return message

    def messages(self) -> list[str]:
        """Captured messages in order."""
        return [line.message for line in self.lines]


__all__ = [
    "API_URL",
    "CannedResponse",
    "FIXED_NOW",
    "FakeGitHub",
    "FakeMinter",
    "LoggedLine",
    "MutableClock",
    "RecordingLogger",
    "RecordingScheduler",
    "StaticUserTokens",
]
