"""Unit tests for the pull request file-diff sync."""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy import select

from hubsync.bootstrap.file_sync import PullRequestFileSync
from hubsync.github.tokens import TokenResolver
from hubsync.silver import PullRequestFile
from hubsync.tasks import FileSyncTarget
from tests.helpers.fakes import (
    API_URL,
    FakeGitHub,
    FakeMinter,
    MutableClock,
    StaticUserTokens,
)
from tests.helpers.payloads import FULL_NAME, pr_file

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

FILES = f"/repos/{FULL_NAME}/pulls/5/files?per_page=2"


def _target(head_sha: str = "abc123", user_id: str | None = None) -> FileSyncTarget:
    return FileSyncTarget(
        installation_id=42,
        repository_id=1001,
        full_name=FULL_NAME,
        number=5,
        head_sha=head_sha,
        user_id=user_id,
    )


def _sync(
    session_factory: async_sessionmaker[AsyncSession],
    fake: FakeGitHub,
    *,
    max_pages: int = 30,
    user_tokens: dict[str, str] | None = None,
) -> PullRequestFileSync:
    resolver = TokenResolver(
        user_tokens=StaticUserTokens(user_tokens or {}), minter=FakeMinter()
    )
    return PullRequestFileSync(
        session_factory,
        resolver,
        api_url=API_URL,
        http_client=fake.client(),
        per_page=2,
        max_pages=max_pages,
        clock=MutableClock(),
    )


def _paged_files() -> FakeGitHub:
    fake = FakeGitHub()
    fake.add(FILES, [pr_file("a.py"), pr_file("b.py")], next_path=f"{FILES}&page=2")
    fake.add(f"{FILES}&page=2", [pr_file("c.py", status="added")])
    return fake


async def _stored(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[tuple[str, str]]:
    async with session_factory() as session:
        rows = (
            await session.execute(
                select(PullRequestFile.head_sha, PullRequestFile.filename).order_by(
                    PullRequestFile.head_sha, PullRequestFile.filename
                )
            )
        ).all()
    return [(sha, filename) for sha, filename in rows]


@pytest.mark.asyncio
async def test_sync_follows_pages_and_stores_files(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Every page of the diff is stored under the head SHA."""
    fake = _paged_files()

    stored = await _sync(session_factory, fake).sync(_target())

    assert stored == 3
    assert await _stored(session_factory) == [
        ("abc123", "a.py"),
        ("abc123", "b.py"),
        ("abc123", "c.py"),
    ]
    assert fake.requests[0].headers["authorization"] == "token inst-42-1"


@pytest.mark.asyncio
async def test_sync_stops_at_page_bound(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Very large diffs are truncated at ``max_pages``."""
    fake = _paged_files()

    stored = await _sync(session_factory, fake, max_pages=1).sync(_target())

    assert stored == 2
    assert fake.paths() == [FILES]


@pytest.mark.asyncio
async def test_sync_keeps_older_head_snapshots(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A new head SHA adds rows without touching the previous snapshot."""
    fake = FakeGitHub()
    fake.add(FILES, [pr_file("a.py")])
    sync = _sync(session_factory, fake)

    await sync.sync(_target("abc123"))
    await sync.sync(_target("def456"))
    await sync.sync(_target("def456"))

    assert await _stored(session_factory) == [
        ("abc123", "a.py"),
        ("def456", "a.py"),
    ]


@pytest.mark.asyncio
async def test_sync_prefers_user_token(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A target carrying a user id authenticates as that user."""
    fake = FakeGitHub()
    fake.add(FILES, [])

    stored = await _sync(
        session_factory, fake, user_tokens={"u-1": "user-token"}
    ).sync(_target(user_id="u-1"))

    assert stored == 0
    assert fake.requests[0].headers["authorization"] == "token user-token"
