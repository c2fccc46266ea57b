"""
Publish/flush engine: drain the offline queue in order over a live client.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from tracker_agent.core.events import STATUS_QUEUE_FLUSHED, STATUS_QUEUE_PENDING, EventChannel
from tracker_agent.core.offline_queue import OfflineQueueStore
from tracker_agent.errors import PublishFailure
from tracker_agent.models import QueuedPayload, TrackerConfig

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, topic: str, payload: str, *, qos: int) -> Any:
        """Queue one message for delivery; raise PublishFailure if refused."""
        ...


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def flush_queue(
    store: OfflineQueueStore,
    client: Publisher,
    config: TrackerConfig,
    events: EventChannel,
    *,
    clock: Callable[[], str] = _utc_iso,
) -> int:
    """
    Publish queued entries oldest first, stopping at the first failure.

    The failed entry and everything after it stay queued untouched; the store
    is rewritten with exactly that remainder. Returns the pending count.
    """
    queue = store.load()
    if not queue:
        return 0

    remaining: list[QueuedPayload] = []
    for index, entry in enumerate(queue):
        stamped = entry.stamped(clock())
        try:
            client.publish(config.topic, stamped.to_json(), qos=config.qos)
        except PublishFailure as exc:
            logger.warning("Publish failed at entry %d of %d: %s", index + 1, len(queue), exc)
            remaining = queue[index:]
            break
        events.last_payload(stamped)

    store.save(remaining)
    pending = len(remaining)
    logger.info("Flushed %d of %d queued entries", len(queue) - pending, len(queue))
    events.status(
        STATUS_QUEUE_FLUSHED if pending == 0 else STATUS_QUEUE_PENDING,
        topic=config.topic,
        pending=pending,
    )
    return pending
