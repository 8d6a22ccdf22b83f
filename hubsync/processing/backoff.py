"""Exponential, capped retry delays."""

from __future__ import annotations

import typing as typ

from hubsync.github.errors import GitHubRateLimitError

if typ.TYPE_CHECKING:
    from hubsync.config import RetryPolicy


def backoff_delay_ms(policy: RetryPolicy, attempt_count: int) -> int:
    """Return the delay after the ``attempt_count``-th failure.

    The delay doubles from ``base_delay_ms`` and never exceeds
    ``max_delay_ms``; it is non-decreasing in ``attempt_count``.
    """
    exponent = max(attempt_count, 1) - 1
    # Clamp the exponent so huge attempt counts cannot overflow the multiply.
    exponent = min(exponent, 62)
    return min(policy.max_delay_ms, policy.base_delay_ms * (2**exponent))


def retry_delay_ms(
    policy: RetryPolicy, attempt_count: int, error: BaseException
) -> int:
    """Return the delay before retrying after ``error``.

    Rate-limited failures wait at least as long as GitHub asked.
    """
    delay = backoff_delay_ms(policy, attempt_count)
    if isinstance(error, GitHubRateLimitError):
        return max(delay, error.retry_after_ms)
    return delay


def attempts_exhausted(policy: RetryPolicy, attempt_count: int) -> bool:
    """Whether ``attempt_count`` failures use up the attempt budget."""
    return attempt_count >= policy.max_attempts


__all__ = ["attempts_exhausted", "backoff_delay_ms", "retry_delay_ms"]
