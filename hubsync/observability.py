"""Structured events and error categories for the sync engine.

Every state transition worth alerting on is logged as a single
``[event.name] key=value ...`` line. Errors are bucketed with
:func:`categorize_error` so dashboards can tell a rate limit from a missing
credential without parsing messages.
"""

from __future__ import annotations

import enum
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from hubsync.github.errors import (
    GitHubAPIError,
    GitHubAppTokenError,
    GitHubConfigError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
    NoGitHubTokenError,
)
from hubsync.logging import get_logger, log_error, log_info, log_warning
from hubsync.webhooks.errors import (
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    MissingWebhookHeaderError,
    WebhookSecretMissingError,
)

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 500
_HTTP_SERVER_ERROR_THRESHOLD = 500


class SyncEventType(enum.StrEnum):
    """Structured log event names."""

    WEBHOOK_RECEIVED = "webhook.received"
    WEBHOOK_DUPLICATE = "webhook.duplicate"
    WEBHOOK_REJECTED = "webhook.rejected"
    WEBHOOK_PROCESSED = "webhook.processed"
    WEBHOOK_RETRY_SCHEDULED = "webhook.retry_scheduled"
    WEBHOOK_DEAD_LETTERED = "webhook.dead_lettered"
    WEBHOOK_RETRIES_PROMOTED = "webhook.retries_promoted"
    BOOTSTRAP_STEP_COMPLETED = "bootstrap.step.completed"
    BOOTSTRAP_JOB_DONE = "bootstrap.job.done"
    BOOTSTRAP_JOB_RETRY = "bootstrap.job.retry"
    BOOTSTRAP_JOB_FAILED = "bootstrap.job.failed"
    BOOTSTRAP_JOB_REAPED = "bootstrap.job.reaped"
    INSTALLATION_SUSPENDED = "installation.suspended"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    CONFIGURATION = "configuration"
    SIGNATURE = "signature"
    UPSTREAM = "upstream"
    RATE_LIMIT = "rate_limit"
    NO_CREDENTIAL = "no_credential"
    TRANSIENT = "transient"
    SCHEMA_DRIFT = "schema_drift"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubRateLimitError, ErrorCategory.RATE_LIMIT),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (WebhookSecretMissingError, ErrorCategory.CONFIGURATION),
    (InvalidWebhookSignatureError, ErrorCategory.SIGNATURE),
    (MissingWebhookHeaderError, ErrorCategory.SIGNATURE),
    (InvalidWebhookPayloadError, ErrorCategory.SIGNATURE),
    (NoGitHubTokenError, ErrorCategory.NO_CREDENTIAL),
    (GitHubAppTokenError, ErrorCategory.UPSTREAM),
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting and retry decisions."""
    # Rate limits subclass GitHubAPIError, so the map is consulted first.
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    if isinstance(exc, GitHubAPIError):
        if (
            exc.status_code is not None
            and exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        ):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.UPSTREAM
    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Return whether a failure may succeed on a later attempt.

    Configuration errors never heal by themselves. A missing credential only
    heals when its source can come back.
    """
    category = categorize_error(exc)
    if category is ErrorCategory.CONFIGURATION:
        return False
    if isinstance(exc, NoGitHubTokenError):
        return exc.retryable
    return True


def truncate_error(exc: BaseException | str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Return a single-line diagnostic no longer than ``limit`` characters."""
    text = exc if isinstance(exc, str) else f"{type(exc).__name__}: {exc}"
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class WebhookEventLogger:
    """Emit structured events for webhook receipt and processing."""

    def received(
        self, delivery_id: str, event_name: str, action: str | None, *, created: bool
    ) -> None:
        """Log a persisted delivery, or a duplicate redelivery."""
        event = (
            SyncEventType.WEBHOOK_RECEIVED if created else SyncEventType.WEBHOOK_DUPLICATE
        )
        log_info(
            logger,
            "[%s] delivery_id=%s event=%s action=%s",
            event,
            delivery_id,
            event_name,
            action,
        )

    def rejected(self, error: BaseException) -> None:
        """Log a delivery refused at the HTTP boundary."""
        log_warning(
            logger,
            "[%s] error_type=%s error_category=%s error_message=%s",
            SyncEventType.WEBHOOK_REJECTED,
            type(error).__name__,
            categorize_error(error),
            error,
        )

    def processed(self, delivery_id: str, event_name: str, action: str | None) -> None:
        """Log a successfully applied event."""
        log_info(
            logger,
            "[%s] delivery_id=%s event=%s action=%s",
            SyncEventType.WEBHOOK_PROCESSED,
            delivery_id,
            event_name,
            action,
        )

    def retry_scheduled(
        self,
        delivery_id: str,
        attempt_count: int,
        next_attempt_at: dt.datetime,
        error: BaseException,
    ) -> None:
        """Log a failed attempt that will be retried."""
        log_warning(
            logger,
            "[%s] delivery_id=%s attempt_count=%d next_attempt_at=%s "
            "error_category=%s error_message=%s",
            SyncEventType.WEBHOOK_RETRY_SCHEDULED,
            delivery_id,
            attempt_count,
            next_attempt_at.isoformat(),
            categorize_error(error),
            truncate_error(error),
        )

    def dead_lettered(
        self, delivery_id: str, attempt_count: int, error: BaseException
    ) -> None:
        """Log an event that exhausted its attempts."""
        log_error(
            logger,
            "[%s] delivery_id=%s attempt_count=%d error_category=%s error_message=%s",
            SyncEventType.WEBHOOK_DEAD_LETTERED,
            delivery_id,
            attempt_count,
            categorize_error(error),
            truncate_error(error),
        )

    def retries_promoted(self, count: int) -> None:
        """Log how many retry rows became pending again."""
        if count:
            log_info(
                logger, "[%s] promoted=%d", SyncEventType.WEBHOOK_RETRIES_PROMOTED, count
            )


class BootstrapEventLogger:
    """Emit structured events for bootstrap jobs."""

    def step_completed(
        self, lock_key: str, step: str, items: int, *, exhausted: bool
    ) -> None:
        """Log one step invocation (chunk) finishing."""
        log_info(
            logger,
            "[%s] lock_key=%s step=%s items=%d exhausted=%s",
            SyncEventType.BOOTSTRAP_STEP_COMPLETED,
            lock_key,
            step,
            items,
            exhausted,
        )

    def job_done(self, lock_key: str, items_fetched: int) -> None:
        """Log a completed bootstrap."""
        log_info(
            logger,
            "[%s] lock_key=%s items_fetched=%d",
            SyncEventType.BOOTSTRAP_JOB_DONE,
            lock_key,
            items_fetched,
        )

    def job_retry(
        self, lock_key: str, attempt_count: int, delay_ms: int, error: BaseException
    ) -> None:
        """Log a bootstrap attempt that will be retried."""
        log_warning(
            logger,
            "[%s] lock_key=%s attempt_count=%d delay_ms=%d error_category=%s "
            "error_message=%s",
            SyncEventType.BOOTSTRAP_JOB_RETRY,
            lock_key,
            attempt_count,
            delay_ms,
            categorize_error(error),
            truncate_error(error),
        )

    def job_failed(self, lock_key: str, attempt_count: int, error: BaseException) -> None:
        """Log a bootstrap that reached the terminal failed state."""
        log_error(
            logger,
            "[%s] lock_key=%s attempt_count=%d error_category=%s error_message=%s",
            SyncEventType.BOOTSTRAP_JOB_FAILED,
            lock_key,
            attempt_count,
            categorize_error(error),
            truncate_error(error),
        )

    def job_reaped(self, lock_key: str, attempt_count: int) -> None:
        """Log a stuck job being restarted."""
        log_warning(
            logger,
            "[%s] lock_key=%s attempt_count=%d",
            SyncEventType.BOOTSTRAP_JOB_REAPED,
            lock_key,
            attempt_count,
        )

    def installation_suspended(self, installation_id: int, status_code: int | None) -> None:
        """Log an installation GitHub no longer lets us reach."""
        log_warning(
            logger,
            "[%s] installation_id=%d status_code=%s",
            SyncEventType.INSTALLATION_SUSPENDED,
            installation_id,
            status_code,
        )


__all__ = [
    "MAX_ERROR_LENGTH",
    "BootstrapEventLogger",
    "ErrorCategory",
    "SyncEventType",
    "WebhookEventLogger",
    "categorize_error",
    "is_retryable",
    "truncate_error",
]
