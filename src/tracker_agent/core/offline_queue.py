"""
Offline queue of samples not yet confirmed published.

Ordered, bounded, durable. Enqueue order is delivery order; when the cap is
exceeded the oldest entries are dropped first.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from tracker_agent.core.kv_store import KeyValueStore
from tracker_agent.models import QueuedPayload

logger = logging.getLogger(__name__)

QUEUE_KEY = "offline_location_queue"
MAX_QUEUE_LENGTH = 500


class OfflineQueueStore:
    """
    Offline queue persisted in one KeyValueStore slot.

    Not safe for concurrent mutation: every caller goes through the agent
    controller's worker thread.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        key: str = QUEUE_KEY,
        max_length: int = MAX_QUEUE_LENGTH,
    ) -> None:
        self._store = store if store is not None else KeyValueStore()
        self.key = key
        self.max_length = max_length

    def load(self) -> list[QueuedPayload]:
        """Return the stored queue in order, silently skipping unparseable entries."""
        stored = self._store.get_string_list(self.key)
        if stored is None:
            return []

        result: list[QueuedPayload] = []
        for raw in stored:
            try:
                result.append(QueuedPayload.from_json(raw))
            except (ValueError, KeyError, TypeError) as exc:
                logger.debug("Dropping unreadable queue entry: %s", exc)
        return result

    def save(self, queue: Iterable[QueuedPayload]) -> None:
        """Replace the stored queue with exactly these entries, in order."""
        self._store.set_string_list(self.key, [item.to_json() for item in queue])

    def enqueue(self, payload: QueuedPayload) -> int:
        """Append payload, evict from the front past the cap, return the new length."""
        queue = self.load()
        queue.append(payload)
        if len(queue) > self.max_length:
            dropped = len(queue) - self.max_length
            del queue[:dropped]
            logger.warning("Offline queue full, dropped %d oldest entries", dropped)
        self.save(queue)
        return len(queue)

    def pending(self) -> int:
        return len(self.load())

    def clear(self) -> None:
        self.save([])
