"""Bronze layer: verified webhook deliveries stored verbatim."""

from __future__ import annotations

from .errors import TimezoneAwareRequiredError, WebhookEventPersistError
from .services import RawWebhookEventWriter, RecordedDelivery, WebhookDelivery
from .storage import (
    Base,
    RawWebhookEvent,
    UTCDateTime,
    WebhookProcessState,
    init_bronze_storage,
)

__all__ = [
    "Base",
    "RawWebhookEvent",
    "RawWebhookEventWriter",
    "RecordedDelivery",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "WebhookDelivery",
    "WebhookEventPersistError",
    "WebhookProcessState",
    "init_bronze_storage",
]
