"""Verify inbound GitHub deliveries and hand them to the Bronze store.

The receiver does no processing: once a delivery is verified and persisted
the HTTP layer answers 200 and the processor picks it up later.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import msgspec

from hubsync.bronze.services import RawWebhookEventWriter, WebhookDelivery
from hubsync.common.time import utcnow
from hubsync.observability import WebhookEventLogger

from .errors import (
    InvalidWebhookPayloadError,
    MissingWebhookHeaderError,
    WebhookRejectedError,
)
from .verify import verify_signature

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock
    from hubsync.config import WebhookConfig

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"
SIGNATURE_HEADER = "X-Hub-Signature-256"


@dc.dataclass(frozen=True, slots=True)
class WebhookMetadata:
    """Shallow routing fields lifted from a payload."""

    action: str | None = None
    installation_id: int | None = None
    repository_id: int | None = None


@dc.dataclass(frozen=True, slots=True)
class ReceiveResult:
    """Outcome returned to the HTTP layer."""

    delivery_id: str
    event_id: int
    duplicate: bool


def _scalar_text(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int | float):
        return str(value)
    return None


def _scalar_id(value: object) -> int | None:
    text = _scalar_text(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _nested_id(payload: dict[str, typ.Any], key: str) -> int | None:
    container = payload.get(key)
    if not isinstance(container, dict):
        return None
    return _scalar_id(container.get("id"))


def extract_metadata(payload: dict[str, typ.Any]) -> WebhookMetadata:
    """Pull ``action``, ``installation.id`` and ``repository.id``.

    Only string or numeric values are accepted; anything else is dropped
    rather than rejected, since the raw payload is stored regardless.
    """
    return WebhookMetadata(
        action=_scalar_text(payload.get("action")),
        installation_id=_nested_id(payload, "installation"),
        repository_id=_nested_id(payload, "repository"),
    )


def _require_header(value: str | None, header: str) -> str:
    if value is None or not value.strip():
        raise MissingWebhookHeaderError(header)
    return value.strip()


def _decode_body(body: bytes) -> dict[str, typ.Any]:
    try:
        payload = msgspec.json.decode(body)
    except msgspec.DecodeError as exc:
        raise InvalidWebhookPayloadError.not_json() from exc
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError.not_object()
    return payload


class WebhookReceiver:
    """Check headers, signature and JSON, then persist the delivery."""

    def __init__(
        self,
        config: WebhookConfig,
        writer: RawWebhookEventWriter,
        *,
        event_logger: WebhookEventLogger | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Bind the secret configuration and the Bronze writer."""
        self._config = config
        self._writer = writer
        self._events = event_logger or WebhookEventLogger()
        self._clock = clock

    @classmethod
    def from_session_factory(
        cls, config: WebhookConfig, session_factory: async_sessionmaker[AsyncSession]
    ) -> WebhookReceiver:
        """Build a receiver writing through ``session_factory``."""
        return cls(config, RawWebhookEventWriter(session_factory))

    async def receive(
        self,
        body: bytes,
        *,
        event_name: str | None,
        delivery_id: str | None,
        signature: str | None,
    ) -> ReceiveResult:
        """Verify and persist one delivery.

        Checks run cheapest first: headers (400), secret configuration
        (500), signature (401), then JSON decoding (400).

        Raises
        ------
        WebhookRejectedError
            Subclass describing why the delivery was refused.

        """
        try:
            event = _require_header(event_name, EVENT_HEADER)
            delivery = _require_header(delivery_id, DELIVERY_HEADER)
            secret = self._config.require_secret()
            verify_signature(secret, body, signature)
            payload = _decode_body(body)
        except WebhookRejectedError as exc:
            self._events.rejected(exc)
            raise

        metadata = extract_metadata(payload)
        recorded = await self._writer.record(
            WebhookDelivery(
                delivery_id=delivery,
                event_name=event,
                payload=payload,
                received_at=self._clock(),
                action=metadata.action,
                installation_id=metadata.installation_id,
                repository_id=metadata.repository_id,
                signature_valid=True,
            )
        )
        self._events.received(
            delivery, event, metadata.action, created=recorded.created
        )
        return ReceiveResult(
            delivery_id=delivery,
            event_id=recorded.event_id,
            duplicate=not recorded.created,
        )


__all__ = [
    "DELIVERY_HEADER",
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
    "ReceiveResult",
    "WebhookMetadata",
    "WebhookReceiver",
    "extract_metadata",
]
