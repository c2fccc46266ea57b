"""
Tracker agent configuration.

Process settings come from environment variables, optionally loaded from
standard env files.

Priority (lowest -> highest):
1) /etc/tracker-agent/agent.env (system install)
2) ~/.config/tracker-agent/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)

The TRACKER_* tracker fields are not part of AgentConfig: they form the
configure payload sent to the controller at startup (see tracker_payload_from_env).
"""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from dotenv import dotenv_values, load_dotenv

from tracker_agent.errors import ConfigError

DEFAULT_REACHABILITY_HOST = "google.com"
DEFAULT_REACHABILITY_TIMEOUT_S = 3.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0
FALLBACK_USER = "mobile-device"

# configure payload key -> environment variable
_TRACKER_ENV_KEYS = {
    "device_id": "TRACKER_DEVICE_ID",
    "user": "TRACKER_USER",
    "broker": "TRACKER_BROKER",
    "port": "TRACKER_PORT",
    "topic": "TRACKER_TOPIC",
    "client_id": "TRACKER_CLIENT_ID",
    "username": "TRACKER_USERNAME",
    "password": "TRACKER_PASSWORD",
    "interval_seconds": "TRACKER_INTERVAL_S",
    "qos": "TRACKER_QOS",
}


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/tracker-agent/agent.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "tracker-agent" / ".env"

    # 3) project override
    yield Path(".env")


def load_env_files() -> None:
    """
    Load the standard env files into the environment.

    Existing variables always win. Files are applied highest priority first,
    so a lower file only fills what is still missing.
    """
    for p in reversed(list(_env_paths())):
        if p.is_file():
            load_dotenv(p, override=False)


def read_env_files() -> dict[str, str]:
    """Merged values of the standard env files, without touching os.environ."""
    merged: dict[str, str] = {}
    for p in _env_paths():
        if p.is_file():
            merged.update({k: v for k, v in dotenv_values(p).items() if v is not None})
    return merged


def layered_env(process_env: Mapping[str, str]) -> dict[str, str]:
    """Env file values with process_env on top (process env always wins)."""
    env = read_env_files()
    env.update(process_env)
    return env


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


def _positive_float_env(key: str, default: float) -> float:
    raw = os.getenv(key, "")
    if raw == "":
        return default
    value = _parse_float(key, raw)
    if value <= 0:
        raise ConfigError(f"{key} must be > 0")
    return value


def _optional_float_env(key: str) -> Optional[float]:
    raw = os.getenv(key, "")
    return _parse_float(key, raw) if raw else None


@dataclass(frozen=True, slots=True)
class AgentConfig:
    log_level: str
    reachability_host: str
    reachability_timeout_s: float
    connect_timeout_s: float
    sim_latitude: Optional[float]
    sim_longitude: Optional[float]


def load_config(*, dotenv_enabled: bool = True) -> AgentConfig:
    """
    Load process settings from env files and the environment.

    Returns an immutable AgentConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        load_env_files()

    reachability_host = os.getenv("TRACKER_REACHABILITY_HOST", "").strip() or DEFAULT_REACHABILITY_HOST

    sim_latitude = _optional_float_env("TRACKER_SIM_LAT")
    if sim_latitude is not None and not (-90.0 <= sim_latitude <= 90.0):
        raise ConfigError(f"TRACKER_SIM_LAT out of range: {sim_latitude}")
    sim_longitude = _optional_float_env("TRACKER_SIM_LON")
    if sim_longitude is not None and not (-180.0 <= sim_longitude <= 180.0):
        raise ConfigError(f"TRACKER_SIM_LON out of range: {sim_longitude}")

    return AgentConfig(
        log_level=os.getenv("TRACKER_LOG_LEVEL", "INFO").strip() or "INFO",
        reachability_host=reachability_host,
        reachability_timeout_s=_positive_float_env(
            "TRACKER_REACHABILITY_TIMEOUT_S", DEFAULT_REACHABILITY_TIMEOUT_S
        ),
        connect_timeout_s=_positive_float_env("TRACKER_CONNECT_TIMEOUT_S", DEFAULT_CONNECT_TIMEOUT_S),
        sim_latitude=sim_latitude,
        sim_longitude=sim_longitude,
    )


def default_user_label() -> str:
    """Label derived from the host, used when TRACKER_USER is unset."""
    return platform.node().strip() or FALLBACK_USER


def tracker_payload_from_env(env: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """
    Build a configure payload from TRACKER_* variables in env (default os.environ).

    Unset variables are omitted so TrackerConfig.from_dict applies its defaults.
    Validation is left to TrackerConfig.
    """
    if env is None:
        env = os.environ
    payload: dict[str, Any] = {}
    for key, env_key in _TRACKER_ENV_KEYS.items():
        raw = env.get(env_key)
        if raw is None or raw == "":
            continue
        payload[key] = raw
    payload.setdefault("user", default_user_label())
    return payload
