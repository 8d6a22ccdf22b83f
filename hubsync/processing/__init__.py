"""Webhook processing: handlers, backoff and the event state machine."""

from __future__ import annotations

from .backoff import attempts_exhausted, backoff_delay_ms, retry_delay_ms
from .errors import WebhookHandlerError, WebhookHandlerReason
from .handlers import HandlerContext, HandlerRegistry, default_registry
from .processor import ProcessBatchResult, WebhookProcessor

__all__ = [
    "HandlerContext",
    "HandlerRegistry",
    "ProcessBatchResult",
    "WebhookHandlerError",
    "WebhookHandlerReason",
    "WebhookProcessor",
    "attempts_exhausted",
    "backoff_delay_ms",
    "default_registry",
    "retry_delay_ms",
]
