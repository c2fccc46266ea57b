"""
Pytest configuration and shared fixtures
"""
import os
import sys
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from tracker_agent.core.events import EventChannel  # noqa: E402
from tracker_agent.core.kv_store import KeyValueStore  # noqa: E402
from tracker_agent.core.offline_queue import OfflineQueueStore  # noqa: E402
from tracker_agent.errors import PublishFailure  # noqa: E402
from tracker_agent.models import QueuedPayload, TelemetrySample, TrackerConfig  # noqa: E402
from tracker_agent.sensors import Position  # noqa: E402


class SyncExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self, *a, **k):
        self.submitted = []

    def submit(self, fn, *args):
        self.submitted.append((fn, args))
        fn(*args)

    def shutdown(self, *a, **k):
        pass


class DeferredExecutor:
    """Holds submitted work until run_all() so tests can interleave commands."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self):
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)

    def shutdown(self, *a, **k):
        self.pending.clear()


class FakeBrokerClient:
    """Stand-in for TrackerMQTTClient with scriptable connect/publish outcomes."""

    def __init__(self, config, *, connect_error=None, on_connect=None):
        self.config = config
        self.on_disconnect = None
        self.connected = False
        self.disconnect_calls = 0
        self.published = []
        self.fail_on = set()
        self._connect_error = connect_error
        self._on_connect = on_connect

    def connect(self):
        if self._on_connect is not None:
            self._on_connect(self)
        if self._connect_error is not None:
            raise self._connect_error
        self.connected = True

    def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self):
        return self.connected

    def publish(self, topic, payload, *, qos):
        if len(self.published) in self.fail_on or not self.connected:
            raise PublishFailure("broker refused message")
        self.published.append((topic, payload, qos))
        return MagicMock(rc=0)

    def drop(self):
        """Simulate a transport-level disconnect."""
        self.connected = False
        if self.on_disconnect is not None:
            self.on_disconnect()


class FakeSensorSource:
    def __init__(self):
        self.enabled = True
        self.position_error = None
        self.battery_error = None
        self.battery = 87
        self.reads = 0

    def location_service_enabled(self):
        return self.enabled

    def current_position(self):
        if self.position_error is not None:
            raise self.position_error
        self.reads += 1
        return Position(
            latitude=-6.2 + self.reads * 0.001,
            longitude=106.8,
            accuracy=5.0,
            speed=1.5,
            bearing=90.0,
        )

    def battery_level(self):
        if self.battery_error is not None:
            raise self.battery_error
        return self.battery


@pytest.fixture
def tracker_payload():
    """Configure command payload as sent by the presentation layer"""
    return {
        'device_id': 'android-001',
        'user': 'mobile-device',
        'broker': 'mqtt.example.test',
        'port': 1883,
        'topic': 'tracking/android/android-001/location',
        'client_id': 'mobile-tracker-test',
        'username': '',
        'password': '',
        'interval_seconds': 15,
    }


@pytest.fixture
def tracker_config(tracker_payload):
    return TrackerConfig.from_dict(tracker_payload)


@pytest.fixture
def kv_store(tmp_path):
    return KeyValueStore(str(tmp_path / "store.json"))


@pytest.fixture
def queue_store(kv_store):
    return OfflineQueueStore(kv_store)


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def make_payload():
    def _make(n: int, topic: str = "tracking/android/android-001/location") -> QueuedPayload:
        return QueuedPayload(
            sample=TelemetrySample(
                device_id="android-001",
                user="mobile-device",
                latitude=-6.2 + n * 0.0001,
                longitude=106.8,
                accuracy=4.0,
                speed=0.0,
                bearing=0.0,
                battery=80,
                timestamp=1_700_000_000 + n,
                date="2023-11-14T22:13:20+00:00",
                topic=topic,
            )
        )

    return _make


@pytest.fixture
def make_client():
    """Factory for FakeBrokerClient instances."""
    return FakeBrokerClient


@pytest.fixture
def sync_executor():
    return SyncExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def sensor_source():
    return FakeSensorSource()

