"""Fetch and cache the file-level diff of one pull request head."""

from __future__ import annotations

import typing as typ

from hubsync.common.time import utcnow
from hubsync.github.client import DEFAULT_API_URL, GitHubRestClient
from hubsync.github.parsing import (
    GitHubPullRequestFile,
    decode,
    pull_request_file_record,
)
from hubsync.logging import get_logger, log_info
from hubsync.silver.upsert import upsert_records

if typ.TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock
    from hubsync.github.tokens import TokenResolver
    from hubsync.tasks.scheduler import FileSyncTarget

logger = get_logger(__name__)

MAX_FILE_PAGES = 30


class PullRequestFileSync:
    """Page through ``/pulls/{n}/files`` and upsert rows keyed by head SHA.

    Rows for older head SHAs are left alone; each (PR, SHA) pair is its own
    snapshot of the diff.
    """

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: TokenResolver,
        *,
        api_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        per_page: int = 100,
        max_pages: int = MAX_FILE_PAGES,
        clock: Clock = utcnow,
    ) -> None:
        """Bind storage, credentials and the page bound."""
        self._session_factory = session_factory
        self._resolver = resolver
        self._api_url = api_url
        self._http_client = http_client
        self._per_page = per_page
        self._max_pages = max_pages
        self._clock = clock

    async def sync(self, target: FileSyncTarget) -> int:
        """Fetch the diff of ``target`` and return how many files were stored."""
        resolved = await self._resolver.resolve(target.user_id, target.installation_id)
        url: str | None = (
            f"repos/{target.full_name}/pulls/{target.number}/files"
            f"?per_page={self._per_page}"
        )
        stored = 0
        pages = 0
        async with GitHubRestClient(
            resolved.token,
            base_url=self._api_url,
            http_client=self._http_client,
            clock=self._clock,
        ) as client:
            while url is not None and pages < self._max_pages:
                response = await client.get(url)
                records = [
                    pull_request_file_record(
                        target.repository_id,
                        target.number,
                        target.head_sha,
                        decode(item, GitHubPullRequestFile, kind="pull request file"),
                    )
                    for item in response.as_list()
                ]
                async with self._session_factory() as session:
                    counts = await upsert_records(session, records)
                    await session.commit()
                stored += counts.total
                pages += 1
                url = response.next_url

        log_info(
            logger,
            "pull request files synced key=%s files=%d truncated=%s",
            target.dedupe_key,
            stored,
            url is not None,
        )
        return stored


__all__ = ["MAX_FILE_PAGES", "PullRequestFileSync"]
