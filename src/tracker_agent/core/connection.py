"""
Broker connection manager.

Owns the one logical broker connection of an agent:

    DISCONNECTED --ensure_connected--> CONNECTING --CONNACK--> CONNECTED
    CONNECTED --transport drop--> DISCONNECTED (reconnect scheduled)
    any --deactivate--> DISCONNECTED

Connect attempts run on a single-worker executor. Each attempt carries the
epoch it was started under; when it completes, a result whose epoch is no
longer current (or that finishes after reconnection was disabled) is torn down
instead of adopted, and a failure it reports is not surfaced as a status
for the newer activation. The state lock is only held to read or swap fields, never
across network I/O.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Optional

from tracker_agent.core.events import STATUS_CONNECT_FAILED, STATUS_DISCONNECTED, STATUS_STREAMING, EventChannel
from tracker_agent.errors import ConnectFailure
from tracker_agent.models import TrackerConfig
from tracker_agent.mqtt_client import TrackerMQTTClient

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def default_client_factory(connect_timeout_s: float) -> Callable[[TrackerConfig], TrackerMQTTClient]:
    def _factory(config: TrackerConfig) -> TrackerMQTTClient:
        return TrackerMQTTClient(config, connect_timeout_s=connect_timeout_s)

    return _factory


class ConnectionManager:
    """
    Connect, detect drops, reconnect, and discard stale attempts.

    on_connected(client, config) runs after a connection is adopted; the
    controller uses it to schedule a queue flush. Its failures are logged and
    swallowed so the queue simply waits for the next tick.
    """

    def __init__(
        self,
        events: EventChannel,
        *,
        client_factory: Optional[Callable[[TrackerConfig], Any]] = None,
        executor: Optional[Any] = None,
        connect_timeout_s: float = 10.0,
        on_connected: Optional[Callable[[Any, TrackerConfig], None]] = None,
    ) -> None:
        self._events = events
        self._client_factory = client_factory or default_client_factory(connect_timeout_s)
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="mqtt-connect")
        self.on_connected = on_connected

        self._lock = threading.Lock()
        self._config: Optional[TrackerConfig] = None
        self._client: Optional[Any] = None
        self._epoch = 0
        self._allow_reconnect = False
        self._connecting = False

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def allow_reconnect(self) -> bool:
        return self._allow_reconnect

    @property
    def client(self) -> Optional[Any]:
        return self._client

    @property
    def state(self) -> ConnectionState:
        client = self._client
        if client is not None and client.is_connected():
            return ConnectionState.CONNECTED
        if self._connecting:
            return ConnectionState.CONNECTING
        return ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def activate(self, config: TrackerConfig) -> int:
        """Adopt config under a new epoch and enable reconnection. Returns the epoch."""
        with self._lock:
            self._epoch += 1
            self._config = config
            self._allow_reconnect = True
            epoch = self._epoch
        logger.info("Connection manager active for %s:%s (epoch %d)", config.broker, config.port, epoch)
        return epoch

    def deactivate(self) -> None:
        """Disable reconnection, invalidate in-flight attempts, close the connection."""
        with self._lock:
            self._allow_reconnect = False
            self._epoch += 1
            self._config = None
            client = self._client
            self._client = None
        if client is not None:
            try:
                client.disconnect()
            except Exception:
                logger.exception("Error disconnecting MQTT client")

    def ensure_connected(self) -> bool:
        """
        Schedule a connect attempt if reconnection is enabled, a config is
        active, no attempt is in flight and no live connection exists.

        Returns True if an attempt was scheduled.
        """
        with self._lock:
            if not self._allow_reconnect or self._config is None or self._connecting:
                return False
            if self._client is not None and self._client.is_connected():
                return False
            self._connecting = True
            config = self._config
            epoch = self._epoch

        try:
            self._executor.submit(self._attempt, config, epoch)
        except RuntimeError:
            # executor already shut down
            with self._lock:
                self._connecting = False
            logger.warning("Connect attempt not scheduled: executor closed")
            return False
        return True

    def _attempt(self, config: TrackerConfig, epoch: int) -> None:
        retry = False
        try:
            retry = self._connect_and_adopt(config, epoch)
        finally:
            with self._lock:
                self._connecting = False
        if retry:
            self.ensure_connected()

    def _connect_and_adopt(self, config: TrackerConfig, epoch: int) -> bool:
        """Returns True when the result was discarded but a newer config wants a connection."""
        try:
            client = self._client_factory(config)
            client.on_disconnect = lambda c=client: self._handle_disconnect(c)
            client.connect()
        except Exception as exc:
            if isinstance(exc, ConnectFailure):
                logger.warning("MQTT connect to %s:%s failed: %s", config.broker, config.port, exc)
            else:
                logger.exception("Unexpected error connecting to %s:%s", config.broker, config.port)
            stale, retry = self._check_stale(epoch)
            if stale:
                # the activation that asked for this attempt is gone
                logger.info("Ignoring failed connect from epoch %d (current %d)", epoch, self._epoch)
                return retry
            self._events.status(STATUS_CONNECT_FAILED, error=str(exc))
            return False

        with self._lock:
            stale, retry = self._stale_locked(epoch)
            if not stale:
                self._client = client

        if stale:
            logger.info("Discarding connection from epoch %d (current %d)", epoch, self._epoch)
            try:
                client.disconnect()
            except Exception:
                logger.exception("Error discarding stale MQTT client")
            return retry

        self._events.status(STATUS_STREAMING, topic=config.topic)
        if self.on_connected is not None:
            try:
                self.on_connected(client, config)
            except Exception:
                logger.exception("Post-connect flush failed; queue kept for next tick")
        return False

    def _stale_locked(self, epoch: int) -> tuple[bool, bool]:
        # caller holds self._lock
        stale = epoch != self._epoch or not self._allow_reconnect
        retry = stale and self._allow_reconnect and self._config is not None
        return stale, retry

    def _check_stale(self, epoch: int) -> tuple[bool, bool]:
        """(stale, retry) for an attempt started under epoch."""
        with self._lock:
            return self._stale_locked(epoch)

    def _handle_disconnect(self, client: Any) -> None:
        with self._lock:
            if self._client is not client:
                return
            self._client = None
            allow = self._allow_reconnect
        self._events.status(STATUS_DISCONNECTED)
        if allow:
            # independent task, not a nested call chain
            self.ensure_connected()

    def close(self) -> None:
        self.deactivate()
        self._executor.shutdown(wait=False, cancel_futures=True)
