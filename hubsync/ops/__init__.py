"""Operator read paths over the sync engine's state."""

from __future__ import annotations

from .snapshot import OpsSnapshot, build_snapshot, snapshot_to_builtins

__all__ = ["OpsSnapshot", "build_snapshot", "snapshot_to_builtins"]
