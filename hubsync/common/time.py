"""Clock helpers for timestamp arithmetic in milliseconds."""

from __future__ import annotations

import datetime as dt
import typing as typ

type Clock = typ.Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def to_epoch_ms(value: dt.datetime) -> int:
    """Return milliseconds since the Unix epoch for an aware datetime."""
    return int(value.timestamp() * 1000)


def add_ms(value: dt.datetime, delay_ms: int) -> dt.datetime:
    """Shift ``value`` forward by ``delay_ms`` milliseconds."""
    return value + dt.timedelta(milliseconds=delay_ms)


def parse_github_datetime(value: str | None) -> dt.datetime | None:
    """Parse GitHub ISO-8601 timestamps (``Z`` suffix) into aware UTC values.

    Empty or malformed values yield ``None`` so callers fall back to their
    own defaults.
    """
    if not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)
