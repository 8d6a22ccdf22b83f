"""Persistence models for inbound webhook deliveries."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

from hubsync.bronze.errors import TimezoneAwareRequiredError
from hubsync.common.time import utcnow


class WebhookProcessState(enum.StrEnum):
    """Lifecycle of a stored delivery.

    ``processed`` and ``dead_letter`` are terminal. Only ``retry`` rows are
    ever promoted back to ``pending``.
    """

    PENDING = "pending"
    RETRY = "retry"
    PROCESSED = "processed"
    DEAD_LETTER = "dead_letter"


class Base(DeclarativeBase):
    """Declarative base shared by every hubsync table."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class RawWebhookEvent(Base):
    """One row per GitHub delivery id, kept forever as an audit trail."""

    __tablename__ = "github_webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_state_received", "process_state", "received_at"),
        Index("ix_webhook_events_state_next_attempt", "process_state", "next_attempt_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(String(64), unique=True)
    event_name: Mapped[str] = mapped_column(String(64))
    action: Mapped[str | None] = mapped_column(String(64), default=None)
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    repository_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    signature_valid: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    process_state: Mapped[str] = mapped_column(
        String(16), default=WebhookProcessState.PENDING.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    received_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    processed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


async def init_bronze_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
