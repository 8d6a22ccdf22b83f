"""Drive stored webhook events through their processing state machine.

``pending`` events are claimed in bounded batches and applied by the handler
registered for their (event, action). Success makes them ``processed``; a
failure bumps ``attempt_count`` and either schedules a ``retry`` with capped
exponential backoff or, once the budget is spent, parks the event in
``dead_letter``. A slower sweep flips due ``retry`` rows back to ``pending``.
Dead letters are only ever revived by an operator.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import typing as typ

from sqlalchemy import select, update

from hubsync.bronze.storage import RawWebhookEvent, WebhookProcessState
from hubsync.common.time import add_ms, utcnow
from hubsync.config import RetryPolicy
from hubsync.logging import get_logger, log_debug, log_exception, log_info
from hubsync.observability import WebhookEventLogger, truncate_error

from .backoff import attempts_exhausted, retry_delay_ms
from .errors import WebhookHandlerError
from .handlers import HandlerContext, default_registry

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubsync.common.time import Clock
    from hubsync.tasks.scheduler import TaskScheduler

    from .handlers import HandlerRegistry

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 4


@dc.dataclass(slots=True)
class ProcessBatchResult:
    """Outcome counts of one :meth:`WebhookProcessor.process_pending` call."""

    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0

    def add(self, state: WebhookProcessState | None) -> None:
        """Count one event's resulting state."""
        match state:
            case WebhookProcessState.PROCESSED:
                self.processed += 1
            case WebhookProcessState.RETRY:
                self.retried += 1
            case WebhookProcessState.DEAD_LETTER:
                self.dead_lettered += 1
            case _:
                pass

    @property
    def total(self) -> int:
        """Events that changed state."""
        return self.processed + self.retried + self.dead_lettered


class WebhookProcessor:
    """Apply pending webhook events with retry and dead-letter handling."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        scheduler: TaskScheduler | None = None,
        retry_policy: RetryPolicy | None = None,
        registry: HandlerRegistry | None = None,
        event_logger: WebhookEventLogger | None = None,
        clock: Clock = utcnow,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        """Bind storage, collaborators and the retry policy."""
        if concurrency < 1:
            msg = f"concurrency must be positive, got: {concurrency}"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._policy = retry_policy or RetryPolicy()
        self._registry = registry or default_registry
        self._events = event_logger or WebhookEventLogger()
        self._clock = clock
        self._concurrency = concurrency

    async def process_pending(self, limit: int = 50) -> ProcessBatchResult:
        """Process up to ``limit`` pending events, oldest first.

        Events run concurrently, each in its own session, so one failing
        handler cannot roll back another event's writes.
        """
        async with self._session_factory() as session:
            event_ids = (
                await session.scalars(
                    select(RawWebhookEvent.id)
                    .where(
                        RawWebhookEvent.process_state
                        == WebhookProcessState.PENDING.value
                    )
                    .order_by(RawWebhookEvent.received_at, RawWebhookEvent.id)
                    .limit(limit)
                )
            ).all()

        result = ProcessBatchResult()
        if not event_ids:
            return result

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _run(event_id: int) -> WebhookProcessState | None:
            async with semaphore:
                return await self.process_event(event_id)

        for state in await asyncio.gather(*(_run(event_id) for event_id in event_ids)):
            result.add(state)
        return result

    async def process_event(self, event_id: int) -> WebhookProcessState | None:
        """Apply one event if it is still pending and return its new state."""
        async with self._session_factory() as session:
            event = await session.get(RawWebhookEvent, event_id)
            if event is None or event.process_state != WebhookProcessState.PENDING:
                return None
            delivery_id = event.delivery_id
            event_name = event.event_name
            action = event.action
            attempt_count = event.attempt_count
            now = self._clock()
            ctx = HandlerContext(
                session=session, event=event, now=now, scheduler=self._scheduler
            )

            handler = self._registry.resolve(event_name, action)
            try:
                if handler is None:
                    log_debug(
                        logger, "no handler for event=%s action=%s", event_name, action
                    )
                else:
                    await handler(ctx)
                event.process_state = WebhookProcessState.PROCESSED.value
                event.processed_at = now
                event.last_error = None
                event.next_attempt_at = None
                await session.commit()
            except Exception as exc:  # noqa: BLE001
                await session.rollback()
                return await self._record_failure(
                    session, event_id, delivery_id, event_name, attempt_count, exc, now
                )

        self._events.processed(delivery_id, event_name, action)
        self._run_deferred(ctx, delivery_id)
        return WebhookProcessState.PROCESSED

    async def _record_failure(  # noqa: PLR0913
        self,
        session: AsyncSession,
        event_id: int,
        delivery_id: str,
        event_name: str,
        attempt_count: int,
        exc: Exception,
        now: dt.datetime,
    ) -> WebhookProcessState:
        error: Exception = (
            exc
            if isinstance(exc, WebhookHandlerError)
            else WebhookHandlerError.handler_failed(event_name, exc)
        )
        attempts = attempt_count + 1
        values: dict[str, object] = {
            "attempt_count": attempts,
            "last_error": truncate_error(error),
        }
        if attempts_exhausted(self._policy, attempts):
            state = WebhookProcessState.DEAD_LETTER
            values["next_attempt_at"] = None
        else:
            state = WebhookProcessState.RETRY
            next_attempt_at = add_ms(now, retry_delay_ms(self._policy, attempts, exc))
            values["next_attempt_at"] = next_attempt_at
        values["process_state"] = state.value

        await session.execute(
            update(RawWebhookEvent)
            .where(RawWebhookEvent.id == event_id)
            .values(**values)
        )
        await session.commit()

        if state is WebhookProcessState.DEAD_LETTER:
            self._events.dead_lettered(delivery_id, attempts, exc)
        else:
            self._events.retry_scheduled(
                delivery_id,
                attempts,
                typ.cast("dt.datetime", values["next_attempt_at"]),
                exc,
            )
        return state

    @staticmethod
    def _run_deferred(ctx: HandlerContext, delivery_id: str) -> None:
        # The event is already committed; a failed enqueue must not undo it.
        try:
            ctx.run_deferred()
        except Exception as exc:  # noqa: BLE001
            log_exception(
                logger, f"deferred task failed for delivery_id={delivery_id}", exc
            )

    async def promote_due_retries(self, now: dt.datetime | None = None) -> int:
        """Flip ``retry`` rows whose ``next_attempt_at`` has passed to ``pending``."""
        cutoff = now or self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(RawWebhookEvent)
                .where(
                    RawWebhookEvent.process_state == WebhookProcessState.RETRY.value,
                    RawWebhookEvent.next_attempt_at <= cutoff,
                )
                .values(process_state=WebhookProcessState.PENDING.value)
            )
            await session.commit()
        count = result.rowcount or 0
        self._events.retries_promoted(count)
        return count

    async def requeue_dead_letter(self, delivery_id: str) -> bool:
        """Send a dead-lettered delivery back to ``pending`` with a fresh budget.

        Returns ``False`` when no dead-lettered delivery has that id.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(RawWebhookEvent)
                .where(
                    RawWebhookEvent.delivery_id == delivery_id,
                    RawWebhookEvent.process_state
                    == WebhookProcessState.DEAD_LETTER.value,
                )
                .values(
                    process_state=WebhookProcessState.PENDING.value,
                    attempt_count=0,
                    next_attempt_at=None,
                )
            )
            await session.commit()
        requeued = bool(result.rowcount)
        if requeued:
            log_info(logger, "requeued dead letter delivery_id=%s", delivery_id)
        return requeued


__all__ = ["DEFAULT_CONCURRENCY", "ProcessBatchResult", "WebhookProcessor"]
