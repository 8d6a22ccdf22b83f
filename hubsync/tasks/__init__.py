"""Task queue integration: scheduling seam, Dramatiq actors and broker setup."""

from __future__ import annotations

from .scheduler import DramatiqTaskScheduler, FileSyncTarget, TaskScheduler

__all__ = ["DramatiqTaskScheduler", "FileSyncTarget", "TaskScheduler"]
