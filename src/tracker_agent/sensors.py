"""
Sensor sources and the sample producer.

A SensorSource answers three questions: is the location service on, where are
we, and how full is the battery. SampleProducer turns one round of answers
into an immutable TelemetrySample.
"""

from __future__ import annotations

import hashlib
import logging
import math
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import psutil

from tracker_agent.errors import SensorError, SensorUnavailable
from tracker_agent.models import TelemetrySample, TrackerConfig

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True, slots=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float  # metres
    speed: float  # m/s
    bearing: float  # degrees from north


class SensorSource(Protocol):
    def location_service_enabled(self) -> bool:
        ...

    def current_position(self) -> Position:
        """Best-accuracy fix. May raise on failure or timeout."""
        ...

    def battery_level(self) -> int:
        """Percentage 0-100. May raise when unavailable."""
        ...


def read_system_battery() -> int:
    """Battery percentage of this host via psutil."""
    battery = psutil.sensors_battery()
    if battery is None:
        raise SensorError("no battery present")
    return max(0, min(100, int(round(battery.percent))))


def _seed_for(device_id: str) -> int:
    return int.from_bytes(hashlib.sha256(device_id.encode("utf-8")).digest()[:8], "big")


def _haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def _initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lon2 - lon1)
    x = math.sin(dl) * math.cos(p2)
    y = math.cos(p1) * math.sin(p2) - math.sin(p1) * math.cos(p2) * math.cos(dl)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


class SimulatedSensorSource:
    """
    Deterministic random walk for hosts without a GNSS receiver.

    The walk is seeded from the device id so restarts replay the same track.
    Speed and bearing are derived from consecutive fixes; the time between
    fixes counts as at least min_interval_s. Battery comes from
    the host (psutil) unless a battery reader is supplied.
    """

    def __init__(
        self,
        device_id: str,
        *,
        latitude: float = -6.200000,
        longitude: float = 106.816666,
        step_m: float = 15.0,
        battery_reader: Optional[Callable[[], int]] = None,
        clock: Callable[[], float] = time.monotonic,
        min_interval_s: float = 1.0,
    ) -> None:
        self._rng = random.Random(_seed_for(device_id))
        self._lat = latitude
        self._lon = longitude
        self._step_m = step_m
        self._battery_reader = battery_reader or read_system_battery
        self._clock = clock
        self._min_interval_s = min_interval_s
        self._last_ts: Optional[float] = None
        self.enabled = True

    def location_service_enabled(self) -> bool:
        return self.enabled

    def current_position(self) -> Position:
        now = self._clock()
        heading = self._rng.uniform(0.0, 2.0 * math.pi)
        distance = self._rng.uniform(0.0, self._step_m)
        dlat = (distance * math.cos(heading)) / EARTH_RADIUS_M
        dlon = (distance * math.sin(heading)) / (EARTH_RADIUS_M * math.cos(math.radians(self._lat)))

        prev_lat, prev_lon = self._lat, self._lon
        self._lat = max(-90.0, min(90.0, self._lat + math.degrees(dlat)))
        self._lon = ((self._lon + math.degrees(dlon) + 180.0) % 360.0) - 180.0

        speed = 0.0
        if self._last_ts is not None:
            elapsed = max(now - self._last_ts, self._min_interval_s)
            speed = _haversine_m(prev_lat, prev_lon, self._lat, self._lon) / elapsed
        self._last_ts = now

        return Position(
            latitude=round(self._lat, 7),
            longitude=round(self._lon, 7),
            accuracy=round(self._rng.uniform(3.0, 12.0), 1),
            speed=round(speed, 2),
            bearing=round(_initial_bearing(prev_lat, prev_lon, self._lat, self._lon), 1),
        )

    def battery_level(self) -> int:
        return self._battery_reader()


class SampleProducer:
    """Reads one sample from a SensorSource for the active configuration."""

    def __init__(self, source: SensorSource, *, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self.source = source
        self._clock = clock

    def capture(self, config: TrackerConfig) -> TelemetrySample:
        """
        Raises:
            SensorUnavailable: location service is switched off
            SensorError: the position fix could not be read
        """
        if not self.source.location_service_enabled():
            raise SensorUnavailable("Location service is disabled on this device")

        try:
            position = self.source.current_position()
        except SensorError:
            raise
        except Exception as exc:
            raise SensorError(f"position read failed: {exc}") from exc

        battery: Optional[int]
        try:
            battery = int(self.source.battery_level())
        except Exception as exc:
            logger.debug("Battery read failed, reporting unknown: %s", exc)
            battery = None
        if battery is not None and not (0 <= battery <= 100):
            logger.debug("Battery level out of range, reporting unknown: %s", battery)
            battery = None

        now = self._clock()
        return TelemetrySample(
            device_id=config.device_id,
            user=config.user,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy,
            speed=position.speed,
            bearing=position.bearing,
            battery=battery,
            timestamp=int(now.timestamp()),
            date=now.isoformat(),
            topic=config.topic,
        )
