"""Falcon error handlers translating domain exceptions into JSON responses.

Usage
-----
Register the handlers on the Falcon app::

    app.add_error_handler(WebhookRejectedError, handle_webhook_rejected)
    app.add_error_handler(SyncJobNotFoundError, handle_sync_job_not_found)

"""

from __future__ import annotations

import typing as typ

import falcon

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from hubsync.bootstrap.errors import SyncJobNotFoundError
    from hubsync.webhooks.errors import WebhookRejectedError

__all__ = [
    "InvalidInputError",
    "handle_invalid_input",
    "handle_sync_job_not_found",
    "handle_webhook_rejected",
]


class InvalidInputError(Exception):
    """Raised for client validation errors that should map to HTTP 400.

    Attributes
    ----------
    reason
        Human-readable description of the validation failure.
    field
        Optional name of the input field that failed validation.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize with a validation reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)


async def handle_webhook_rejected(
    _req: Request,
    resp: Response,
    ex: WebhookRejectedError,
    _params: dict[str, typ.Any],
) -> None:
    """Answer a refused delivery with the status the rejection carries.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The rejection, carrying its HTTP status and a client-safe message.
    _params
        URI template parameters (unused).

    """
    resp.status = ex.status
    resp.media = {"title": ex.title, "description": ex.description}


async def handle_sync_job_not_found(
    _req: Request,
    resp: Response,
    ex: SyncJobNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``SyncJobNotFoundError`` to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {"title": "Sync job not found", "description": str(ex)}


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``InvalidInputError`` to an HTTP 400 JSON response."""
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {"title": "Invalid input", "description": ex.reason}
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media
