"""Errors raised by the Silver upsert layer."""

from __future__ import annotations

import enum


class UpsertErrorReason(enum.StrEnum):
    """Machine-readable reasons for upsert failures."""

    MISSING_KEY = "missing_key"
    UNSUPPORTED_RECORD = "unsupported_record"
    CONCURRENT_INSERT = "concurrent_insert"


class UpsertError(Exception):
    """Raised when a record cannot be written under its natural key."""

    def __init__(self, message: str, reason: UpsertErrorReason) -> None:
        """Store a machine-readable reason for programmatic handling."""
        super().__init__(message)
        self.reason = reason

    @classmethod
    def missing_key(cls, entity: str, field: str) -> UpsertError:
        """Create an error for a record lacking a natural-key column."""
        return cls(
            f"{entity} record is missing natural key field {field}",
            UpsertErrorReason.MISSING_KEY,
        )

    @classmethod
    def unsupported(cls, record_type: str) -> UpsertError:
        """Create an error for a record type with no entity spec."""
        return cls(
            f"no upsert spec registered for {record_type}",
            UpsertErrorReason.UNSUPPORTED_RECORD,
        )

    @classmethod
    def concurrent_insert(cls, entity: str) -> UpsertError:
        """Create an error when an insert race leaves no row behind."""
        return cls(
            f"{entity} insert conflicted but no existing row was found",
            UpsertErrorReason.CONCURRENT_INSERT,
        )
