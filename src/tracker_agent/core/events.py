"""
Outbound event channel for the tracker agent.

Two channels reach the presentation layer:
  status        {status, topic?, pending?, error?}
  last_payload  sample fields plus sent_at (null until published)

Events are plain dicts carried on a queue; exceptions never cross it, only
their text.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from typing import Any, Optional

from tracker_agent.models import QueuedPayload

logger = logging.getLogger(__name__)

STATUS_CHANNEL = "status"
PAYLOAD_CHANNEL = "last_payload"

# Status texts
STATUS_STOPPED = "Stopped"
STATUS_STREAMING = "Streaming location..."
STATUS_DISCONNECTED = "MQTT disconnected"
STATUS_CONNECT_FAILED = "MQTT connection failed"
STATUS_BUFFERING = "MQTT offline, buffering"
STATUS_QUEUE_FLUSHED = "Offline queue flushed"
STATUS_QUEUE_PENDING = "Offline queue pending"
STATUS_GPS_DISABLED = "GPS disabled"
STATUS_LOCATION_ERROR = "Location error"
STATUS_INVALID_CONFIG = "Invalid configuration"
STATUS_STORE_ERROR = "Offline queue error"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    channel: str
    payload: dict[str, Any]


def build_status(
    status: str,
    *,
    topic: Optional[str] = None,
    pending: Optional[int] = None,
    error: Optional[str] = None,
) -> dict[str, Any]:
    """Status payload with optional keys left out when unset."""
    payload: dict[str, Any] = {"status": status}
    if topic is not None:
        payload["topic"] = topic
    if pending is not None:
        payload["pending"] = pending
    if error is not None:
        payload["error"] = error
    return payload


class EventChannel:
    """Non-blocking producer side of the outbound event queue."""

    def __init__(self, sink: Optional[queue.Queue] = None) -> None:
        self._queue: queue.Queue = sink if sink is not None else queue.Queue()

    def emit(self, channel: str, payload: dict[str, Any]) -> None:
        self._queue.put_nowait(AgentEvent(channel=channel, payload=payload))

    def status(
        self,
        status: str,
        *,
        topic: Optional[str] = None,
        pending: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        payload = build_status(status, topic=topic, pending=pending, error=error)
        logger.debug("status: %s", payload)
        self.emit(STATUS_CHANNEL, payload)

    def last_payload(self, payload: QueuedPayload) -> None:
        self.emit(PAYLOAD_CHANNEL, payload.to_dict())

    def get(self, timeout: Optional[float] = None) -> Optional[AgentEvent]:
        """Next event, or None if none arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[AgentEvent]:
        """All events currently queued, oldest first."""
        events: list[AgentEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
