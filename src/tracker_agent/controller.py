"""
Agent controller: the only component the command channel talks to.

    Idle --configure--> Active --stop--> Idle

Commands (configure, stop, periodic ticks, post-connect flushes) are queued on
one inbox and executed one at a time by a single worker thread, so the queue
store and the active configuration are never touched concurrently. Ticks and
flushes carry the epoch they were issued under and are dropped once a newer
configuration (or a stop) has replaced it.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from tracker_agent.core.connection import ConnectionManager
from tracker_agent.core.events import (
    STATUS_BUFFERING,
    STATUS_GPS_DISABLED,
    STATUS_INVALID_CONFIG,
    STATUS_LOCATION_ERROR,
    STATUS_STOPPED,
    STATUS_STORE_ERROR,
    STATUS_STREAMING,
    EventChannel,
)
from tracker_agent.core.flush import flush_queue
from tracker_agent.core.offline_queue import OfflineQueueStore
from tracker_agent.core.scheduler import Ticker
from tracker_agent.errors import ConfigError, SensorError, SensorUnavailable, StoreError
from tracker_agent.models import QueuedPayload, TrackerConfig
from tracker_agent.sensors import SampleProducer

logger = logging.getLogger(__name__)


class CommandKind(str, Enum):
    CONFIGURE = "configure"
    STOP = "stop"
    TICK = "tick"
    FLUSH = "flush"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    payload: Optional[dict[str, Any]] = None
    epoch: Optional[int] = None


@dataclass
class ControllerState:
    config: Optional[TrackerConfig] = None
    ticker: Optional[Ticker] = None
    ticks: int = 0


class AgentController:
    def __init__(
        self,
        store: OfflineQueueStore,
        producer: SampleProducer,
        events: EventChannel,
        connection: ConnectionManager,
        reachability: Callable[[], bool],
        *,
        ticker_factory: Callable[[float, Callable[[], None]], Any] = Ticker,
    ) -> None:
        self.store = store
        self.producer = producer
        self.events = events
        self.connection = connection
        self.reachability = reachability
        self._ticker_factory = ticker_factory

        self.connection.on_connected = self._on_connected
        self.state = ControllerState()
        self._inbox: queue.Queue[Command] = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    # -- command channel -------------------------------------------------

    def submit(self, command: Command) -> None:
        self._inbox.put(command)

    def configure(self, payload: dict[str, Any]) -> None:
        self.submit(Command(CommandKind.CONFIGURE, payload=dict(payload)))

    def stop(self) -> None:
        self.submit(Command(CommandKind.STOP))

    @property
    def active(self) -> bool:
        return self.state.config is not None

    # -- worker ----------------------------------------------------------

    def start(self) -> None:
        if self._worker:
            return
        self._worker = threading.Thread(target=self.run, name="tracker-controller", daemon=True)
        self._worker.start()
        logger.info("Controller worker started")

    def run(self) -> None:
        """Process commands until SHUTDOWN."""
        while True:
            command = self._inbox.get()
            if command.kind is CommandKind.SHUTDOWN:
                break
            self.handle(command)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop tracking, drain the inbox up to the stop, and release the connection."""
        self.submit(Command(CommandKind.STOP))
        self.submit(Command(CommandKind.SHUTDOWN))
        if self._worker:
            self._worker.join(timeout=timeout)
            if self._worker.is_alive():
                logger.warning("Controller worker did not stop within timeout")
            self._worker = None
        else:
            # no worker thread: process inline
            self.run()
        self.connection.close()

    def handle(self, command: Command) -> None:
        """Execute one command; nothing raised here escapes the worker."""
        try:
            if command.kind is CommandKind.CONFIGURE:
                self._activate(command.payload or {})
            elif command.kind is CommandKind.STOP:
                self._deactivate()
            elif command.kind is CommandKind.TICK:
                if command.epoch is None or command.epoch == self.connection.epoch:
                    self.tick()
            elif command.kind is CommandKind.FLUSH:
                if command.epoch is None or command.epoch == self.connection.epoch:
                    self._flush_after_connect()
            else:
                logger.warning("Unhandled command: %s", command.kind)
        except Exception:
            logger.exception("Command %s failed", command.kind.value)

    # -- lifecycle -------------------------------------------------------

    def _activate(self, payload: dict[str, Any]) -> None:
        try:
            config = TrackerConfig.from_dict(payload)
        except ConfigError as exc:
            logger.error("Rejected configuration: %s", exc)
            self.events.status(STATUS_INVALID_CONFIG, error=str(exc))
            return

        # stop-before-start: the previous activation is fully torn down first
        self._deactivate()
        self.state.config = config
        epoch = self.connection.activate(config)
        logger.info(
            "Tracking %s as %s -> %s:%s topic=%s every %ss",
            config.device_id,
            config.user,
            config.broker,
            config.port,
            config.topic,
            config.interval_seconds,
        )

        self.tick()

        ticker = self._ticker_factory(
            config.interval_seconds,
            lambda: self.submit(Command(CommandKind.TICK, epoch=epoch)),
        )
        ticker.start()
        self.state.ticker = ticker

    def _deactivate(self) -> None:
        ticker = self.state.ticker
        self.state.ticker = None
        if ticker is not None:
            ticker.cancel()
        self.connection.deactivate()
        self.state.config = None
        self.events.status(STATUS_STOPPED)
        logger.info("Tracking stopped")

    # -- tick ------------------------------------------------------------

    def tick(self) -> None:
        config = self.state.config
        if config is None or not self.connection.allow_reconnect:
            return
        self.state.ticks += 1

        if not self.connection.is_connected():
            self.connection.ensure_connected()

        try:
            sample = self.producer.capture(config)
        except SensorUnavailable as exc:
            logger.warning("Location service disabled: %s", exc)
            self.events.status(STATUS_GPS_DISABLED, error=str(exc))
            return
        except SensorError as exc:
            logger.warning("Location read failed: %s", exc)
            self.events.status(STATUS_LOCATION_ERROR, error=str(exc))
            return

        payload = QueuedPayload(sample=sample)
        try:
            pending = self.store.enqueue(payload)
        except StoreError as exc:
            logger.error("Could not queue sample: %s", exc)
            self.events.last_payload(payload)
            self.events.status(STATUS_STORE_ERROR, topic=config.topic, error=str(exc))
            return

        # provisional: shown before the publish outcome is known
        self.events.last_payload(payload)

        client = self.connection.client
        online = client is not None and client.is_connected() and self.reachability()
        if not online:
            logger.info("Offline, buffering (%d pending)", pending)
            self.events.status(STATUS_BUFFERING, topic=config.topic, pending=pending)
            return

        try:
            pending = flush_queue(self.store, client, config, self.events)
        except StoreError as exc:
            logger.error("Could not rewrite queue after flush: %s", exc)
            self.events.status(STATUS_STORE_ERROR, topic=config.topic, error=str(exc))
            return
        self.events.status(STATUS_STREAMING, topic=config.topic, pending=pending)

    # -- post-connect flush ----------------------------------------------

    def _on_connected(self, client: Any, config: TrackerConfig) -> None:
        # runs on the connect thread; the flush itself happens on the worker
        self.submit(Command(CommandKind.FLUSH, epoch=self.connection.epoch))

    def _flush_after_connect(self) -> None:
        config = self.state.config
        client = self.connection.client
        if config is None or client is None or not client.is_connected():
            return
        try:
            flush_queue(self.store, client, config, self.events)
        except StoreError as exc:
            logger.warning("Flush after connect failed, queue kept: %s", exc)
