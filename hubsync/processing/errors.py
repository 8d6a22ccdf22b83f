"""Errors raised while applying stored webhook events."""

from __future__ import annotations

import enum


class WebhookHandlerReason(enum.StrEnum):
    """Machine-readable reasons for handler failures."""

    INVALID_PAYLOAD = "invalid_payload"
    HANDLER_FAILED = "handler_failed"


class WebhookHandlerError(Exception):
    """Raised when a handler cannot apply an event."""

    def __init__(self, message: str, reason: WebhookHandlerReason) -> None:
        """Store a machine-readable reason for programmatic handling."""
        super().__init__(message)
        self.reason = reason

    @classmethod
    def invalid_payload(cls, event_name: str, detail: str) -> WebhookHandlerError:
        """Create an error for a payload missing what the handler needs."""
        return cls(
            f"{event_name} payload is invalid: {detail}",
            WebhookHandlerReason.INVALID_PAYLOAD,
        )

    @classmethod
    def handler_failed(cls, event_name: str, exc: Exception) -> WebhookHandlerError:
        """Wrap an unexpected exception raised by a handler."""
        return cls(
            f"{event_name} handler failed: {exc}",
            WebhookHandlerReason.HANDLER_FAILED,
        )
