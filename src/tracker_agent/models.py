"""
Data model for the tracker agent: active configuration, samples, queue records.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping, Optional

from tracker_agent.errors import ConfigError

DEFAULT_PORT = 1883
DEFAULT_INTERVAL_S = 10
DEFAULT_QOS = 2
VALID_QOS = (1, 2)

_REQUIRED_FIELDS = ("device_id", "user", "broker", "topic")


def generate_client_id() -> str:
    """Unique per call: millisecond clock plus a random suffix."""
    return f"mobile-tracker-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def _as_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value).strip()


def _as_int(payload: Mapping[str, Any], key: str, default: int) -> int:
    raw = payload.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise ConfigError(f"Invalid integer for {key}: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class TrackerConfig:
    device_id: str
    user: str
    broker: str
    topic: str
    port: int = DEFAULT_PORT
    client_id: str = field(default_factory=generate_client_id)
    username: str = ""
    password: str = field(default="", repr=False)
    interval_seconds: int = DEFAULT_INTERVAL_S
    qos: int = DEFAULT_QOS

    def __post_init__(self) -> None:
        for name in _REQUIRED_FIELDS:
            if not getattr(self, name):
                raise ConfigError(f"{name} must be a non-empty string")
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"port out of range: {self.port}")
        if self.interval_seconds < 1:
            raise ConfigError("interval_seconds must be >= 1")
        if self.qos not in VALID_QOS:
            raise ConfigError(f"qos must be one of {VALID_QOS}, got {self.qos}")
        if not self.client_id:
            raise ConfigError("client_id must be a non-empty string")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TrackerConfig":
        """
        Build a config from a configure command payload.

        Missing port, interval and qos take their defaults; a missing or empty
        client_id is generated. Raises ConfigError on invalid values.
        """
        if not isinstance(payload, Mapping):
            raise ConfigError("configure payload must be a mapping")

        client_id = _as_text(payload, "client_id") or generate_client_id()
        return cls(
            device_id=_as_text(payload, "device_id"),
            user=_as_text(payload, "user"),
            broker=_as_text(payload, "broker"),
            topic=_as_text(payload, "topic"),
            port=_as_int(payload, "port", DEFAULT_PORT),
            client_id=client_id,
            username=_as_text(payload, "username"),
            # passwords are taken verbatim
            password="" if payload.get("password") is None else str(payload["password"]),
            interval_seconds=_as_int(payload, "interval_seconds", DEFAULT_INTERVAL_S),
            qos=_as_int(payload, "qos", DEFAULT_QOS),
        )

    @property
    def credentials(self) -> tuple[Optional[str], Optional[str]]:
        """(username, password) with empty strings mapped to None (anonymous)."""
        return (self.username or None, self.password or None)


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    device_id: str
    user: str
    latitude: float
    longitude: float
    accuracy: float
    speed: float
    bearing: float
    battery: Optional[int]  # None when the level could not be read
    timestamp: int
    date: str
    topic: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class QueuedPayload:
    """A sample waiting for delivery. sent_at is stamped at publish time."""

    sample: TelemetrySample
    sent_at: Optional[str] = None

    def stamped(self, sent_at: str) -> "QueuedPayload":
        return replace(self, sent_at=sent_at)

    def to_dict(self) -> dict[str, Any]:
        data = self.sample.to_dict()
        data["sent_at"] = self.sent_at
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "QueuedPayload":
        """
        Parse one stored record.

        Raises ValueError, KeyError or TypeError when the record is malformed.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise TypeError(f"record must be an object, got {type(data).__name__}")

        battery = data["battery"]
        if battery is not None and (isinstance(battery, bool) or not isinstance(battery, int)):
            raise TypeError(f"battery must be int or null, got {battery!r}")

        sample = TelemetrySample(
            device_id=str(data["device_id"]),
            user=str(data["user"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=float(data["accuracy"]),
            speed=float(data["speed"]),
            bearing=float(data["bearing"]),
            battery=battery,
            timestamp=int(data["timestamp"]),
            date=str(data["date"]),
            topic=str(data["topic"]),
        )
        sent_at = data.get("sent_at")
        return cls(sample=sample, sent_at=None if sent_at is None else str(sent_at))
