"""
Error taxonomy for the tracker agent.

None of these are fatal to the process: the controller turns each of them into
a status event and the affected samples stay queued for the next tick.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker agent errors."""


class ConfigError(TrackerError, ValueError):
    """Raised when configuration is missing or invalid."""


class SensorError(TrackerError):
    """Raised when a position fix cannot be read."""


class SensorUnavailable(SensorError):
    """Raised when the location service reports itself disabled."""


class ConnectFailure(TrackerError):
    """Raised when the broker rejects or never answers a connect attempt."""


class PublishFailure(TrackerError):
    """Raised when the client refuses to queue a publish."""


class StoreError(TrackerError):
    """Raised when durable storage cannot be written."""
