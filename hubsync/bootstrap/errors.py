"""Errors raised by the repository bootstrap."""

from __future__ import annotations


class SyncJobNotFoundError(LookupError):
    """Raised when no sync job exists for a lock key."""

    def __init__(self, lock_key: str) -> None:
        """Store the lock key that was not found."""
        super().__init__(f"no sync job for lock key {lock_key!r}")
        self.lock_key = lock_key


class BootstrapStepError(RuntimeError):
    """Raised when the step journal points somewhere it should not."""

    def __init__(self, message: str, step: str | None = None) -> None:
        """Store the offending step name."""
        super().__init__(message)
        self.step = step

    @classmethod
    def unknown_step(cls, step: str) -> BootstrapStepError:
        """Create an error for a journal entry naming no known step."""
        return cls(f"unknown bootstrap step {step!r}", step)

    @classmethod
    def invalid_cursor(cls, step: str, cursor: str) -> BootstrapStepError:
        """Create an error for a cursor the step cannot resume from."""
        return cls(f"step {step!r} cannot resume from cursor {cursor!r}", step)


__all__ = ["BootstrapStepError", "SyncJobNotFoundError"]
