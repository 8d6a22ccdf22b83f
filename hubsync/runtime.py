"""Webhook receiver process.

Granian imports ``hubsync.runtime:create_app`` as an ASGI factory in every
worker. With ``HUBSYNC_DATABASE_URL`` set each worker gets its own engine and
serves ``POST /api/github/webhook`` plus the operator endpoints; without it
only the health routes come up so the container can still pass its checks.

Listening and logging come from :class:`hubsync.config.ServerConfig`
(``HUBSYNC_HOST``, ``HUBSYNC_PORT``, ``HUBSYNC_LOG_LEVEL``); signature checks
from ``HUBSYNC_GITHUB_WEBHOOK_SECRET``. ``HUBSYNC_SITE_URL`` is only used to
print the URL to paste into the GitHub App settings.

Run it with ``python -m hubsync.runtime``; the sync worker is a separate
process (``python -m hubsync.worker``).
"""

from __future__ import annotations

import typing as typ

from hubsync.config import (
    ServerConfig,
    SiteConfig,
    WebhookConfig,
    database_url_from_env,
)
from hubsync.github.errors import GitHubConfigError
from hubsync.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

    from hubsync.api.app import AppDependencies

__all__ = ["build_dependencies", "create_app", "main"]

logger = get_logger(__name__)

_APP_FACTORY = "hubsync.runtime:create_app"


def _server_config() -> ServerConfig:
    """Read the listener settings, exiting with status 1 when they are invalid."""
    try:
        return ServerConfig.from_env()
    except ValueError as exc:
        # A bad port is an operator typo, not a crash worth a traceback.
        log_error(logger, "Invalid HUBSYNC_PORT value (must be 1-65535): %s", exc)
        raise SystemExit(1) from exc


def _announce_webhook_url() -> None:
    try:
        site = SiteConfig.from_env()
    except GitHubConfigError as exc:
        log_warning(logger, "webhook URL unknown: %s", exc)
        return
    log_info(logger, "GitHub App webhook URL: %s", site.webhook_url)


def build_dependencies(database_url: str) -> AppDependencies:
    """Wire the receiver's storage and webhook secret for one worker.

    The secret is read but not required here; a delivery arriving without
    one is answered with a configuration error instead of refusing to boot.
    """
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from hubsync.api.app import AppDependencies

    engine = create_async_engine(database_url)
    webhook_config = WebhookConfig.from_env()
    if not webhook_config.secret:
        log_warning(
            logger,
            "HUBSYNC_GITHUB_WEBHOOK_SECRET unset, deliveries will be refused",
        )
    _announce_webhook_url()
    return AppDependencies(
        session_factory=async_sessionmaker(engine, expire_on_commit=False),
        webhook_config=webhook_config,
    )


def create_app() -> falcon.asgi.App:
    """Build the ASGI app for one Granian worker from the environment."""
    from hubsync.api.app import create_app as build_api

    database_url = database_url_from_env()
    if database_url is None:
        log_warning(logger, "HUBSYNC_DATABASE_URL unset, serving health routes only")
        return build_api()
    return build_api(build_dependencies(database_url))


def main() -> None:
    """Serve the webhook receiver with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    server_config = _server_config()
    level, invalid = configure_logging(server_config.log_level)
    if invalid:
        log_warning(
            logger,
            "Invalid HUBSYNC_LOG_LEVEL %r, falling back to %s",
            server_config.log_level,
            level,
        )
    log_info(
        logger,
        "hubsync webhook receiver listening on %s:%d (log_level=%s)",
        server_config.host,
        server_config.port,
        level,
    )
    Granian(
        _APP_FACTORY,
        address=server_config.host,
        port=server_config.port,
        interface=Interfaces.ASGI,
        factory=True,
    ).serve()


if __name__ == "__main__":
    main()
