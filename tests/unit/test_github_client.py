"""Unit tests for the GitHub REST client."""

from __future__ import annotations

import httpx
import pytest

from hubsync.github import (
    GitHubAPIError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    GitHubRestClient,
    parse_next_link,
)
from hubsync.github.client import (
    RATE_LIMIT_FALLBACK_MS,
    compute_retry_after_ms,
    is_rate_limited,
)
from hubsync.observability import ErrorCategory, categorize_error
from tests.helpers.fakes import API_URL, FIXED_NOW, FakeGitHub


def _client(fake: FakeGitHub) -> GitHubRestClient:
    return GitHubRestClient(
        "tok-123", base_url=API_URL, http_client=fake.client(), clock=lambda: FIXED_NOW
    )


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ('<https://a/x?page=2>; rel="next"', "https://a/x?page=2"),
        (
            '<https://a/x?page=1>; rel="prev", <https://a/x?page=3>; rel="next", '
            '<https://a/x?page=9>; rel="last"',
            "https://a/x?page=3",
        ),
        ('<https://a/x?page=9>; rel="last"', None),
    ],
)
def test_parse_next_link(header: str | None, expected: str | None) -> None:
    """Only the rel="next" target is extracted."""
    assert parse_next_link(header) == expected


@pytest.mark.parametrize(
    ("status", "headers", "expected"),
    [
        (429, {}, True),
        (403, {"x-ratelimit-remaining": "0"}, True),
        (403, {"retry-after": "30"}, True),
        (403, {"x-ratelimit-remaining": "12"}, False),
        (403, {}, False),
        (500, {"x-ratelimit-remaining": "0"}, False),
    ],
)
def test_is_rate_limited(
    status: int, headers: dict[str, str], *, expected: bool
) -> None:
    """429 always throttles; 403 only with rate-limit evidence."""
    assert is_rate_limited(httpx.Response(status, headers=headers)) is expected


def test_retry_after_header_wins() -> None:
    """Retry-After seconds take precedence over the reset epoch."""
    reset = int(FIXED_NOW.timestamp()) + 600
    headers = httpx.Headers({"retry-after": "45", "x-ratelimit-reset": str(reset)})

    assert compute_retry_after_ms(headers, FIXED_NOW) == 45_000


def test_reset_epoch_used_without_retry_after() -> None:
    """The distance to X-RateLimit-Reset is used when no Retry-After exists."""
    reset = int(FIXED_NOW.timestamp()) + 120
    headers = httpx.Headers({"x-ratelimit-reset": str(reset)})

    assert compute_retry_after_ms(headers, FIXED_NOW) == 120_000
    past = httpx.Headers({"x-ratelimit-reset": str(reset - 3600)})
    assert compute_retry_after_ms(past, FIXED_NOW) == 0


def test_fallback_delay_without_hints() -> None:
    """Missing or garbled hints fall back to the fixed delay."""
    garbled = httpx.Headers({"retry-after": "soon"})

    assert compute_retry_after_ms(httpx.Headers(), FIXED_NOW) == RATE_LIMIT_FALLBACK_MS
    assert compute_retry_after_ms(garbled, FIXED_NOW) == RATE_LIMIT_FALLBACK_MS


@pytest.mark.asyncio
async def test_get_sends_credentials_and_returns_cursor() -> None:
    """GET attaches auth headers and exposes the next-page URL."""
    fake = FakeGitHub()
    fake.add(
        "/repos/acme/widgets/pulls?per_page=2",
        [{"number": 1}, {"number": 2}, "noise"],
        next_path="/repos/acme/widgets/pulls?per_page=2&page=2",
    )

    async with _client(fake) as client:
        response = await client.get("/repos/acme/widgets/pulls?per_page=2")

    request = fake.requests[0]
    assert request.headers["Authorization"] == "token tok-123"
    assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"
    assert response.as_list() == [{"number": 1}, {"number": 2}]
    assert response.next_url == fake.url("/repos/acme/widgets/pulls?per_page=2&page=2")


@pytest.mark.asyncio
async def test_absolute_urls_bypass_base() -> None:
    """Link cursors are followed verbatim."""
    fake = FakeGitHub()
    fake.add("/repos/acme/widgets/issues?page=2", [])

    async with _client(fake) as client:
        await client.get(fake.url("/repos/acme/widgets/issues?page=2"))

    assert fake.paths() == ["/repos/acme/widgets/issues?page=2"]


@pytest.mark.asyncio
async def test_throttled_response_raises_rate_limit_error() -> None:
    """Throttling surfaces as GitHubRateLimitError with the wait GitHub asked for."""
    fake = FakeGitHub()
    fake.add(
        "/rate", {"message": "slow down"}, status=429, headers={"retry-after": "7"}
    )

    async with _client(fake) as client:
        with pytest.raises(GitHubRateLimitError) as excinfo:
            await client.get("/rate")

    assert excinfo.value.retry_after_ms == 7_000
    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_http_errors_raise_api_error() -> None:
    """Non-2xx answers that are not throttling raise GitHubAPIError."""
    fake = FakeGitHub()
    fake.add("/forbidden", {"message": "nope"}, status=403)

    async with _client(fake) as client:
        with pytest.raises(GitHubAPIError) as excinfo:
            await client.get("/forbidden")

    assert not isinstance(excinfo.value, GitHubRateLimitError)
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_get_optional_maps_not_found_to_none() -> None:
    """A 404 becomes None while other failures still raise."""
    fake = FakeGitHub()
    fake.add("/boom", {"message": "oops"}, status=502)

    async with _client(fake) as client:
        assert await client.get_optional("/missing") is None
        with pytest.raises(GitHubAPIError):
            await client.get_optional("/boom")


@pytest.mark.asyncio
async def test_shape_drift_is_reported() -> None:
    """Asking for a list from an object body raises a shape error."""
    fake = FakeGitHub()
    fake.add("/repos/acme/widgets", {"id": 1})

    async with _client(fake) as client:
        response = await client.get("/repos/acme/widgets")

    assert response.as_object() == {"id": 1}
    with pytest.raises(GitHubResponseShapeError):
        response.as_list()


def test_url_for_strips_duplicate_slashes() -> None:
    """Relative paths are joined onto the base URL."""
    client = GitHubRestClient("t", base_url=f"{API_URL}/")

    assert client.url_for("repos/a/b") == f"{API_URL}/repos/a/b"
    assert client.url_for("/repos/a/b") == f"{API_URL}/repos/a/b"


@pytest.mark.asyncio
async def test_non_json_success_body_raises_api_error() -> None:
    """A 2xx answer that is not JSON surfaces as a classified upstream error."""
    transport = httpx.MockTransport(
        lambda _request: httpx.Response(200, content=b"<html>maintenance</html>")
    )
    client = GitHubRestClient(
        "tok-123",
        base_url=API_URL,
        http_client=httpx.AsyncClient(transport=transport),
        clock=lambda: FIXED_NOW,
    )

    async with client:
        with pytest.raises(GitHubAPIError, match="non-JSON body") as excinfo:
            await client.get("/repos/acme/widgets")

    assert excinfo.value.status_code == 200
    assert categorize_error(excinfo.value) is ErrorCategory.UPSTREAM
