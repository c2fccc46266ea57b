"""
MQTT client for the tracker agent.

One instance wraps one broker session: clean-session connect with a QoS 2
will, a bounded wait for CONNACK, publish, and teardown. Reconnect policy is
not handled here; an unexpected drop stops the network loop and is reported
through on_disconnect so the connection manager can decide what to do.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from tracker_agent.errors import ConnectFailure, PublishFailure
from tracker_agent.models import TrackerConfig

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_S = 30
WILL_QOS = 2


def will_topic(config: TrackerConfig) -> str:
    return f"{config.topic}/status"


class TrackerMQTTClient:
    """
    Single broker session built from a TrackerConfig.

    connect() blocks until the broker answers or connect_timeout_s elapses and
    raises ConnectFailure on refusal, timeout or socket error.
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        keepalive: int = DEFAULT_KEEPALIVE_S,
        connect_timeout_s: float = 10.0,
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.keepalive = keepalive
        self.connect_timeout_s = connect_timeout_s
        self.on_disconnect = on_disconnect

        self._client: Optional[mqtt.Client] = None
        self._connack = threading.Event()
        self._connect_error: Optional[str] = None
        self._closing = False

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            self._connect_error = str(reason_code)
            logger.error("MQTT connect refused: %s", reason_code)
        else:
            logger.info("Connected to MQTT broker %s:%s as %s", self.config.broker, self.config.port, self.config.client_id)
        self._connack.set()

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if self._closing:
            return
        if self._client is None:
            # dropped during the handshake
            if not self._connack.is_set():
                self._connect_error = f"connection lost before CONNACK: {reason_code}"
                self._connack.set()
            return
        logger.warning("Unexpected MQTT disconnect: %s", reason_code)
        self._client = None
        # Reconnects belong to the connection manager, not paho's loop.
        client.loop_stop()
        if self.on_disconnect is not None:
            self.on_disconnect()

    def connect(self) -> None:
        cfg = self.config
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.client_id,
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        username, password = cfg.credentials
        if username is not None:
            client.username_pw_set(username, password)

        # Broker publishes this if the session dies without a clean disconnect.
        client.will_set(
            will_topic(cfg),
            payload=json.dumps({"device_id": cfg.device_id, "state": "offline"}),
            qos=WILL_QOS,
            retain=False,
        )

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect

        self._connack.clear()
        self._connect_error = None
        self._closing = False

        try:
            client.connect(cfg.broker, cfg.port, keepalive=self.keepalive)
        except (OSError, ValueError) as exc:
            raise ConnectFailure(f"cannot reach {cfg.broker}:{cfg.port}: {exc}") from exc
        client.loop_start()

        if not self._connack.wait(timeout=self.connect_timeout_s):
            self._teardown(client)
            raise ConnectFailure(f"no answer from {cfg.broker}:{cfg.port} within {self.connect_timeout_s:g}s")
        if self._connect_error is not None:
            self._teardown(client)
            raise ConnectFailure(f"broker refused connection: {self._connect_error}")

        self._client = client

    def _teardown(self, client: mqtt.Client) -> None:
        self._closing = True
        try:
            client.disconnect()
            client.loop_stop()
        except Exception:
            logger.exception("Error tearing down MQTT client")

    def disconnect(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        self._teardown(client)
        logger.info("MQTT disconnected from %s:%s", self.config.broker, self.config.port)

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def publish(self, topic: str, payload: str, *, qos: int) -> Any:
        client = self._client
        if client is None or not client.is_connected():
            raise PublishFailure("MQTT client not connected")
        try:
            info = client.publish(topic, payload=payload, qos=qos, retain=False)
        except (ValueError, RuntimeError) as exc:
            raise PublishFailure(str(exc)) from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishFailure(f"publish rejected: {mqtt.error_string(info.rc)}")
        return info
