"""Broker wiring for the sync engine's task queues.

Bootstrap chunks and file-diff syncs travel on their own queues so a worker
can be pointed at one without draining the other. The actors are declared
at import time, which needs a broker: deployments install a real one before
importing :mod:`hubsync.tasks.actors`, local runs opt into an in-memory
stub with ``HUBSYNC_ALLOW_STUB_BROKER`` and pytest always gets one.
"""

from __future__ import annotations

import os
import sys

import dramatiq
from dramatiq.brokers.stub import StubBroker

from hubsync.config import TaskQueueConfig
from hubsync.logging import get_logger, log_info

logger = get_logger(__name__)

BOOTSTRAP_QUEUE = "hubsync.bootstrap"
FILE_SYNC_QUEUE = "hubsync.file_sync"
SYNC_QUEUES = (BOOTSTRAP_QUEUE, FILE_SYNC_QUEUE)


def _under_pytest() -> bool:
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def stub_broker_allowed(config: TaskQueueConfig | None = None) -> bool:
    """Whether an in-memory broker may carry the sync queues."""
    config = config or TaskQueueConfig.from_env()
    return config.allow_stub_broker or _under_pytest()


def _installed_broker() -> dramatiq.Broker | None:
    try:
        return dramatiq.get_broker()
    except (ImportError, LookupError):
        # Dramatiq's implicit default is RabbitMQ, whose client is optional.
        return None


def ensure_broker_configured(config: TaskQueueConfig | None = None) -> dramatiq.Broker:
    """Return the broker the sync actors enqueue on.

    A :class:`StubBroker` is installed only when none exists and
    :func:`stub_broker_allowed` says so.

    Raises
    ------
    RuntimeError
        If no broker is installed and a stub is not allowed.

    """
    broker = _installed_broker()
    if broker is not None:
        return broker
    if not stub_broker_allowed(config):
        message = (
            "No Dramatiq broker configured for "
            f"{', '.join(SYNC_QUEUES)}. Install one before importing "
            "hubsync.tasks.actors or set HUBSYNC_ALLOW_STUB_BROKER=1."
        )
        raise RuntimeError(message)
    broker = StubBroker()
    dramatiq.set_broker(broker)
    log_info(logger, "sync queues use an in-memory stub broker: %s", SYNC_QUEUES)
    return broker


__all__ = [
    "BOOTSTRAP_QUEUE",
    "FILE_SYNC_QUEUE",
    "SYNC_QUEUES",
    "ensure_broker_configured",
    "stub_broker_allowed",
]
