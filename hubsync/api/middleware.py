"""Request-scoped SQLAlchemy sessions for the Falcon app.

Read-only resources (sync job progress, the ops snapshot) use
``req.context.session``. The webhook resource does not: the receiver owns its
own short transaction so a duplicate delivery can be detected without
touching the request session.

Usage
-----
>>> app = falcon.asgi.App(middleware=[SQLAlchemySessionManager(session_factory)])

"""

from __future__ import annotations

import typing as typ

from sqlalchemy.exc import SQLAlchemyError

from hubsync.logging import get_logger, log_error

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["SQLAlchemySessionManager"]

logger = get_logger(__name__)


class SQLAlchemySessionManager:
    """Attach a fresh ``AsyncSession`` to each request and finalize it.

    Successful (2xx/3xx) responses commit, anything else rolls back, and
    the session is always closed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Bind the session factory."""
        self._session_factory = session_factory

    async def process_request(self, req: Request, _resp: Response) -> None:
        """Open the request session.

        A bare factory call keeps the session open until
        :meth:`process_response` closes it.
        """
        req.context.session = self._session_factory()

    def _should_commit(self, resp: Response, *, req_succeeded: bool) -> bool:
        status = str(resp.status)
        return req_succeeded and not status.startswith(("4", "5"))

    async def _finalize_session(
        self,
        session: AsyncSession,
        resp: Response,
        *,
        req_succeeded: bool,
    ) -> None:
        try:
            if session.is_active:
                if self._should_commit(resp, req_succeeded=req_succeeded):
                    await session.commit()
                else:
                    await session.rollback()
        except SQLAlchemyError:
            log_error(logger, "request session cleanup failed", exc_info=True)
            if session.is_active:
                await session.rollback()
            raise
        finally:
            await session.close()

    async def process_response(
        self,
        req: Request,
        resp: Response,
        _resource: object,
        req_succeeded: bool,  # noqa: FBT001 - Falcon middleware signature
    ) -> None:
        """Commit on success, roll back on error, close always."""
        session: AsyncSession | None = getattr(req.context, "session", None)
        if session is None:
            return
        await self._finalize_session(session, resp, req_succeeded=req_succeeded)
