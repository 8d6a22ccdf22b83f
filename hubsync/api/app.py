"""Application factory for the hubsync Falcon ASGI application.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create the full app::

    from hubsync.api.app import AppDependencies, create_app

    deps = AppDependencies(
        session_factory=session_factory,
        webhook_config=WebhookConfig.from_env(),
    )
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from hubsync.api.errors import (
    InvalidInputError,
    handle_invalid_input,
    handle_sync_job_not_found,
    handle_webhook_rejected,
)
from hubsync.api.health.resources import HealthResource, ReadyResource
from hubsync.bootstrap.errors import SyncJobNotFoundError
from hubsync.config import WEBHOOK_PATH, WebhookConfig
from hubsync.webhooks.errors import WebhookRejectedError

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.webhooks.receiver import WebhookReceiver

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    Attributes
    ----------
    session_factory
        Async session factory for database access.
    webhook_config
        Shared secret configuration for signature checks.
    receiver
        Optional pre-built receiver; built from the other two when omitted.

    """

    session_factory: async_sessionmaker[AsyncSession]
    webhook_config: WebhookConfig = dc.field(default_factory=WebhookConfig)
    receiver: WebhookReceiver | None = None

    def build_receiver(self) -> WebhookReceiver:
        """Return the configured receiver or one writing to the session factory."""
        if self.receiver is not None:
            return self.receiver
        from hubsync.webhooks.receiver import WebhookReceiver

        return WebhookReceiver.from_session_factory(
            self.webhook_config, self.session_factory
        )


def create_app(dependencies: AppDependencies | None = None) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Without dependencies only ``/health`` and ``/ready`` are registered.
    With them the app also serves the webhook endpoint, sync job progress
    and the ops snapshot.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    middleware: list[object] = []
    if dependencies is not None:
        from hubsync.api.middleware import SQLAlchemySessionManager

        middleware.append(SQLAlchemySessionManager(dependencies.session_factory))

    app = falcon.asgi.App(middleware=middleware)  # type: ignore[no-matching-overload]  # Falcon stubs

    app.add_route("/health", HealthResource())
    app.add_route(
        "/ready",
        ReadyResource(dependencies.session_factory if dependencies else None),
    )

    if dependencies is not None:
        from hubsync.api.ops.resources import OpsSnapshotResource, SyncJobResource
        from hubsync.api.webhook.resources import WebhookResource

        app.add_route(WEBHOOK_PATH, WebhookResource(dependencies.build_receiver()))
        app.add_route(
            "/api/sync-jobs/{installation_id:int}/{repository_id:int}",
            SyncJobResource(),
        )
        app.add_route("/api/ops/snapshot", OpsSnapshotResource())

    app.add_error_handler(WebhookRejectedError, handle_webhook_rejected)
    app.add_error_handler(SyncJobNotFoundError, handle_sync_job_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)

    return app
