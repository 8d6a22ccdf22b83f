"""Insert-if-absent persistence for webhook deliveries."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hubsync.bronze.errors import WebhookEventPersistError
from hubsync.bronze.storage import RawWebhookEvent, WebhookProcessState

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

Payload: typ.TypeAlias = dict[str, typ.Any]


@dc.dataclass(frozen=True, slots=True)
class WebhookDelivery:
    """Verified delivery plus the shallow metadata lifted from its payload."""

    delivery_id: str
    event_name: str
    payload: Payload
    received_at: dt.datetime
    action: str | None = None
    installation_id: int | None = None
    repository_id: int | None = None
    signature_valid: bool = True


@dc.dataclass(frozen=True, slots=True)
class RecordedDelivery:
    """Outcome of :meth:`RawWebhookEventWriter.record`."""

    event_id: int
    delivery_id: str
    created: bool


class RawWebhookEventWriter:
    """Append-only writer keyed by GitHub delivery id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for inserts."""
        self._session_factory = session_factory

    async def record(self, delivery: WebhookDelivery) -> RecordedDelivery:
        """Persist ``delivery`` unless its delivery id is already stored.

        GitHub redelivers on timeouts and operators can redeliver by hand, so
        a second call with the same delivery id returns the existing row with
        ``created=False`` and leaves its processing state alone.
        """
        async with self._session_factory() as session:
            existing = await self._load_existing(session, delivery.delivery_id)
            if existing is not None:
                return RecordedDelivery(existing.id, existing.delivery_id, created=False)

            event = RawWebhookEvent(
                delivery_id=delivery.delivery_id,
                event_name=delivery.event_name,
                action=delivery.action,
                installation_id=delivery.installation_id,
                repository_id=delivery.repository_id,
                signature_valid=delivery.signature_valid,
                payload=delivery.payload,
                process_state=WebhookProcessState.PENDING.value,
                attempt_count=0,
                received_at=delivery.received_at,
            )
            session.add(event)

            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                existing = await self._load_existing(session, delivery.delivery_id)
                if existing is None:
                    raise WebhookEventPersistError(delivery.delivery_id) from exc
                return RecordedDelivery(existing.id, existing.delivery_id, created=False)

            return RecordedDelivery(event.id, event.delivery_id, created=True)

    @staticmethod
    async def _load_existing(
        session: AsyncSession, delivery_id: str
    ) -> RawWebhookEvent | None:
        return await session.scalar(
            select(RawWebhookEvent).where(RawWebhookEvent.delivery_id == delivery_id)
        )
