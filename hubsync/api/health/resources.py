"""Liveness and readiness endpoints.

``/health`` never touches the database. ``/ready`` runs ``SELECT 1`` when the
app was built with a session factory, so a pod whose database is unreachable
stops receiving webhook traffic.

Usage
-----
Register health endpoints on the Falcon app::

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(session_factory))

"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from hubsync.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["HealthResource", "ReadyResource"]

logger = get_logger(__name__)


class HealthResource:
    """Liveness check returning ``{"status": "ok"}``."""

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health requests."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


class ReadyResource:
    """Readiness check returning ``{"status": "ready"}``.

    Parameters
    ----------
    session_factory
        When given, readiness also requires a database round trip.

    """

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        """Bind the optional session factory."""
        self._session_factory = session_factory

    async def _database_reachable(self) -> bool:
        if self._session_factory is None:
            return True
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            log_warning(logger, "readiness check failed: %s", exc)
            return False
        return True

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /ready requests.

        Responds 503 with ``{"status": "unavailable"}`` when the database
        cannot be reached.
        """
        if await self._database_reachable():
            resp.media = {"status": "ready"}
            resp.status = HTTPStatus.OK
            return
        resp.media = {"status": "unavailable"}
        resp.status = HTTPStatus.SERVICE_UNAVAILABLE
