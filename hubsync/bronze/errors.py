"""Errors raised by the raw webhook event store."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when a naive datetime reaches a UTC column."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error for a naive value bound to a UTC column."""
        return cls("datetime column values")


class WebhookEventPersistError(RuntimeError):
    """Raised when a duplicate insert cannot find the row that won."""

    def __init__(self, delivery_id: str) -> None:
        """Name the delivery whose row vanished."""
        self.delivery_id = delivery_id
        super().__init__(
            f"expected existing webhook event for delivery {delivery_id} after rollback"
        )
