"""Falcon resource accepting GitHub webhook deliveries.

The body is read raw: the HMAC signature covers the exact bytes GitHub sent,
so it must be verified before any JSON decoding.
"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

from hubsync.webhooks.receiver import DELIVERY_HEADER, EVENT_HEADER, SIGNATURE_HEADER

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from hubsync.webhooks.receiver import WebhookReceiver

__all__ = ["WebhookResource"]


class WebhookResource:
    """Handle ``POST /api/github/webhook``."""

    def __init__(self, receiver: WebhookReceiver) -> None:
        """Bind the receiver that verifies and stores deliveries."""
        self._receiver = receiver

    async def on_post(self, req: Request, resp: Response) -> None:
        """Verify and persist one delivery, answering before any processing.

        Redeliveries of a known delivery id answer 200 with
        ``"duplicate": true``. Rejections propagate to the
        ``WebhookRejectedError`` handler.
        """
        body = await req.stream.read()
        result = await self._receiver.receive(
            body,
            event_name=req.get_header(EVENT_HEADER),
            delivery_id=req.get_header(DELIVERY_HEADER),
            signature=req.get_header(SIGNATURE_HEADER),
        )
        resp.media = {
            "ok": True,
            "deliveryId": result.delivery_id,
            "duplicate": result.duplicate,
        }
        resp.status = HTTPStatus.OK
