"""Environment-driven configuration for the sync engine.

Each concern gets a frozen dataclass with a ``from_env()`` constructor. Values
that have sensible defaults fall back quietly; values the engine cannot run
without (webhook secret, site URL) raise a configuration error instead of
degrading silently.

Usage
-----
>>> import os
>>> os.environ["HUBSYNC_WEBHOOK_MAX_ATTEMPTS"] = "8"
>>> RetryPolicy.from_env().max_attempts
8

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os

from hubsync.github.errors import GitHubConfigError
from hubsync.webhooks.errors import WebhookSecretMissingError

WEBHOOK_PATH = "/api/github/webhook"
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_MAX_PORT = 65535


def _read(env_var: str) -> str:
    return os.environ.get(env_var, "").strip()


def _parse_positive_int(env_var: str, default: int) -> int:
    """Read a positive integer env var, falling back to a default."""
    raw = _read(env_var)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{env_var} must be an integer, got: {raw!r}"
        raise ValueError(msg) from exc
    if value < 1:
        msg = f"{env_var} must be positive, got: {value}"
        raise ValueError(msg)
    return value


def _parse_seconds(env_var: str, default: float) -> float:
    raw = _read(env_var)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"{env_var} must be a number of seconds, got: {raw!r}"
        raise ValueError(msg) from exc
    if value <= 0:
        msg = f"{env_var} must be positive, got: {value}"
        raise ValueError(msg)
    return value


@dc.dataclass(frozen=True, slots=True)
class WebhookConfig:
    """Shared secret used to verify inbound webhook signatures.

    The secret is optional at construction time so the HTTP surface can
    still boot; :meth:`require_secret` raises when a delivery arrives and
    no secret is configured.
    """

    secret: str | None = None

    @classmethod
    def from_env(cls) -> WebhookConfig:
        """Read ``HUBSYNC_GITHUB_WEBHOOK_SECRET``."""
        return cls(secret=_read("HUBSYNC_GITHUB_WEBHOOK_SECRET") or None)

    def require_secret(self) -> str:
        """Return the configured secret or raise a configuration error."""
        if not self.secret:
            raise WebhookSecretMissingError
        return self.secret


@dc.dataclass(frozen=True, slots=True)
class SiteConfig:
    """Public base URL under which the webhook endpoint is reachable."""

    site_url: str

    @classmethod
    def from_env(cls) -> SiteConfig:
        """Read ``HUBSYNC_SITE_URL``."""
        site_url = _read("HUBSYNC_SITE_URL")
        if not site_url:
            raise GitHubConfigError.missing("HUBSYNC_SITE_URL")
        return cls(site_url=site_url.rstrip("/"))

    @property
    def webhook_url(self) -> str:
        """Absolute URL GitHub should deliver webhooks to."""
        return f"{self.site_url}{WEBHOOK_PATH}"


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and exponential backoff bounds.

    Attributes
    ----------
    max_attempts
        Failed attempts allowed before an event is dead-lettered or a job
        is marked failed.
    base_delay_ms
        Delay after the first failure; each further failure doubles it.
    max_delay_ms
        Upper bound on any computed delay.

    """

    max_attempts: int = 5
    base_delay_ms: int = 1_000
    max_delay_ms: int = 15 * 60 * 1_000

    def __post_init__(self) -> None:
        """Reject bounds that would break the capped backoff contract."""
        if self.max_delay_ms < self.base_delay_ms:
            msg = (
                f"max_delay_ms ({self.max_delay_ms}) must not be smaller than "
                f"base_delay_ms ({self.base_delay_ms})"
            )
            raise ValueError(msg)

    @classmethod
    def from_env(cls, prefix: str = "HUBSYNC_WEBHOOK") -> RetryPolicy:
        """Read ``{prefix}_MAX_ATTEMPTS`` and the shared backoff bounds."""
        return cls(
            max_attempts=_parse_positive_int(f"{prefix}_MAX_ATTEMPTS", 5),
            base_delay_ms=_parse_positive_int("HUBSYNC_RETRY_BASE_MS", 1_000),
            max_delay_ms=_parse_positive_int("HUBSYNC_RETRY_MAX_MS", 15 * 60 * 1_000),
        )


@dc.dataclass(frozen=True, slots=True)
class BootstrapConfig:
    """Chunk sizes and limits for the repository backfill."""

    pages_per_chunk: int = 10
    per_page: int = 100
    write_batch_size: int = 50
    workflow_job_run_limit: int = 20
    check_run_sha_batch: int = 25
    stuck_after: dt.timedelta = dt.timedelta(minutes=30)
    retry: RetryPolicy = dc.field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls) -> BootstrapConfig:
        """Read ``HUBSYNC_BOOTSTRAP_*`` overrides."""
        return cls(
            pages_per_chunk=_parse_positive_int("HUBSYNC_BOOTSTRAP_PAGES_PER_CHUNK", 10),
            write_batch_size=_parse_positive_int("HUBSYNC_BOOTSTRAP_WRITE_BATCH", 50),
            stuck_after=dt.timedelta(
                minutes=_parse_positive_int("HUBSYNC_BOOTSTRAP_STUCK_MINUTES", 30)
            ),
            retry=RetryPolicy.from_env(prefix="HUBSYNC_BOOTSTRAP"),
        )


@dc.dataclass(frozen=True, slots=True)
class PollerConfig:
    """Cadences for the periodic drivers run by the worker."""

    process_pending_s: float = 1.0
    promote_retries_s: float = 30.0
    reap_stuck_jobs_s: float = 600.0
    sweep_installations_s: float = 1800.0
    batch_size: int = 50
    sweep_limit: int = 20

    @classmethod
    def from_env(cls) -> PollerConfig:
        """Read ``HUBSYNC_POLL_*`` overrides."""
        return cls(
            process_pending_s=_parse_seconds("HUBSYNC_POLL_PENDING_S", 1.0),
            promote_retries_s=_parse_seconds("HUBSYNC_POLL_RETRY_S", 30.0),
            reap_stuck_jobs_s=_parse_seconds("HUBSYNC_POLL_REAPER_S", 600.0),
            sweep_installations_s=_parse_seconds("HUBSYNC_POLL_SWEEP_S", 1800.0),
            batch_size=_parse_positive_int("HUBSYNC_POLL_BATCH_SIZE", 50),
            sweep_limit=_parse_positive_int("HUBSYNC_SWEEP_LIMIT", 20),
        )


@dc.dataclass(frozen=True, slots=True)
class TaskQueueConfig:
    """Task queue settings for the Dramatiq actors."""

    allow_stub_broker: bool = False

    @classmethod
    def from_env(cls) -> TaskQueueConfig:
        """Read ``HUBSYNC_ALLOW_STUB_BROKER`` (``1``, ``true``, ``yes`` or ``on``)."""
        return cls(
            allow_stub_broker=_read("HUBSYNC_ALLOW_STUB_BROKER").lower() in _TRUTHY
        )


@dc.dataclass(frozen=True, slots=True)
class ServerConfig:
    """Where the webhook receiver listens and how loudly it logs."""

    host: str = "0.0.0.0"  # noqa: S104 - containers bind every interface
    port: int = 8080
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 1 <= self.port <= _MAX_PORT:
            msg = f"port {self.port} outside valid range 1-{_MAX_PORT}"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Read ``HUBSYNC_HOST``, ``HUBSYNC_PORT`` and ``HUBSYNC_LOG_LEVEL``.

        Raises
        ------
        ValueError
            If ``HUBSYNC_PORT`` is not an integer in 1-65535.

        """
        raw_port = _read("HUBSYNC_PORT") or "8080"
        try:
            port = int(raw_port)
        except ValueError as exc:
            msg = f"HUBSYNC_PORT must be an integer, got: {raw_port!r}"
            raise ValueError(msg) from exc
        return cls(
            host=_read("HUBSYNC_HOST") or "0.0.0.0",  # noqa: S104
            port=port,
            log_level=_read("HUBSYNC_LOG_LEVEL") or "INFO",
        )


def database_url_from_env() -> str | None:
    """Return ``HUBSYNC_DATABASE_URL`` or ``None`` when unset."""
    return _read("HUBSYNC_DATABASE_URL") or None


__all__ = [
    "WEBHOOK_PATH",
    "BootstrapConfig",
    "PollerConfig",
    "RetryPolicy",
    "ServerConfig",
    "SiteConfig",
    "TaskQueueConfig",
    "WebhookConfig",
    "database_url_from_env",
]
