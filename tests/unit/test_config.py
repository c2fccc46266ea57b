from __future__ import annotations

import os

import pytest

from tracker_agent.config import (
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_REACHABILITY_HOST,
    DEFAULT_REACHABILITY_TIMEOUT_S,
    load_config,
    layered_env,
    load_env_files,
    read_env_files,
    tracker_payload_from_env,
)
from tracker_agent.errors import ConfigError
from tracker_agent.models import TrackerConfig

AGENT_KEYS = [
    "TRACKER_LOG_LEVEL",
    "TRACKER_REACHABILITY_HOST",
    "TRACKER_REACHABILITY_TIMEOUT_S",
    "TRACKER_CONNECT_TIMEOUT_S",
    "TRACKER_SIM_LAT",
    "TRACKER_SIM_LON",
]
TRACKER_KEYS = [
    "TRACKER_DEVICE_ID",
    "TRACKER_USER",
    "TRACKER_BROKER",
    "TRACKER_PORT",
    "TRACKER_TOPIC",
    "TRACKER_CLIENT_ID",
    "TRACKER_USERNAME",
    "TRACKER_PASSWORD",
    "TRACKER_INTERVAL_S",
    "TRACKER_QOS",
]


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for k in AGENT_KEYS + TRACKER_KEYS:
        monkeypatch.delenv(k, raising=False)


def test_defaults_when_env_empty():
    cfg = load_config(dotenv_enabled=False)

    assert cfg.log_level == "INFO"
    assert cfg.reachability_host == DEFAULT_REACHABILITY_HOST
    assert cfg.reachability_timeout_s == DEFAULT_REACHABILITY_TIMEOUT_S
    assert cfg.connect_timeout_s == DEFAULT_CONNECT_TIMEOUT_S
    assert cfg.sim_latitude is None
    assert cfg.sim_longitude is None


def test_valid_env_loads(monkeypatch):
    monkeypatch.setenv("TRACKER_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("TRACKER_REACHABILITY_HOST", "example.org")
    monkeypatch.setenv("TRACKER_REACHABILITY_TIMEOUT_S", "1.5")
    monkeypatch.setenv("TRACKER_CONNECT_TIMEOUT_S", "4")
    monkeypatch.setenv("TRACKER_SIM_LAT", "51.5")
    monkeypatch.setenv("TRACKER_SIM_LON", "-0.12")

    cfg = load_config(dotenv_enabled=False)

    assert cfg.log_level == "DEBUG"
    assert cfg.reachability_host == "example.org"
    assert cfg.reachability_timeout_s == 1.5
    assert cfg.connect_timeout_s == 4.0
    assert cfg.sim_latitude == 51.5
    assert cfg.sim_longitude == -0.12


def test_invalid_timeout_not_number_raises(monkeypatch):
    monkeypatch.setenv("TRACKER_REACHABILITY_TIMEOUT_S", "soon")

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "Invalid number for TRACKER_REACHABILITY_TIMEOUT_S" in str(exc.value)


@pytest.mark.parametrize("raw", ["0", "-1"])
def test_non_positive_timeout_raises(monkeypatch, raw):
    monkeypatch.setenv("TRACKER_CONNECT_TIMEOUT_S", raw)

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "TRACKER_CONNECT_TIMEOUT_S must be > 0" in str(exc.value)


def test_sim_latitude_out_of_range_raises(monkeypatch):
    monkeypatch.setenv("TRACKER_SIM_LAT", "91")

    with pytest.raises(ConfigError) as exc:
        load_config(dotenv_enabled=False)

    assert "TRACKER_SIM_LAT out of range" in str(exc.value)


def test_tracker_payload_from_env_omits_unset_keys(monkeypatch):
    monkeypatch.setenv("TRACKER_DEVICE_ID", "android-002")
    monkeypatch.setenv("TRACKER_USER", "field-unit")
    monkeypatch.setenv("TRACKER_BROKER", "broker.local")
    monkeypatch.setenv("TRACKER_TOPIC", "tracking/android-002")
    monkeypatch.setenv("TRACKER_INTERVAL_S", "30")

    payload = tracker_payload_from_env()

    assert payload == {
        "device_id": "android-002",
        "user": "field-unit",
        "broker": "broker.local",
        "topic": "tracking/android-002",
        "interval_seconds": "30",
    }
    cfg = TrackerConfig.from_dict(payload)
    assert cfg.port == 1883
    assert cfg.interval_seconds == 30
    assert cfg.client_id.startswith("mobile-tracker-")


def test_tracker_payload_user_defaults_to_host_label(monkeypatch):
    monkeypatch.setattr("tracker_agent.config.platform.node", lambda: "")

    payload = tracker_payload_from_env()

    assert payload["user"] == "mobile-device"


def test_load_env_files_does_not_override_process_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    (tmp_path / ".env").write_text("TRACKER_BROKER=from-file\nTRACKER_TOPIC=file/topic\n")
    monkeypatch.setenv("TRACKER_BROKER", "from-env")
    # register TRACKER_TOPIC so monkeypatch removes what the file sets
    monkeypatch.setenv("TRACKER_TOPIC", "placeholder")
    monkeypatch.delenv("TRACKER_TOPIC")

    load_env_files()

    assert os.environ["TRACKER_BROKER"] == "from-env"
    assert os.environ["TRACKER_TOPIC"] == "file/topic"


def test_later_env_file_wins_over_earlier(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    user_env = tmp_path / "xdg" / "tracker-agent" / ".env"
    user_env.parent.mkdir(parents=True)
    user_env.write_text("TRACKER_BROKER=user-broker\nTRACKER_PORT=8883\n")
    (tmp_path / ".env").write_text("TRACKER_BROKER=project-broker\n")
    monkeypatch.setenv("TRACKER_BROKER", "placeholder")
    monkeypatch.delenv("TRACKER_BROKER")
    monkeypatch.setenv("TRACKER_PORT", "placeholder")
    monkeypatch.delenv("TRACKER_PORT")

    assert read_env_files() == {"TRACKER_BROKER": "project-broker", "TRACKER_PORT": "8883"}

    load_env_files()

    assert os.environ["TRACKER_BROKER"] == "project-broker"
    assert os.environ["TRACKER_PORT"] == "8883"


def test_layered_env_keeps_process_values_and_environ(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    (tmp_path / ".env").write_text("TRACKER_BROKER=file-broker\nTRACKER_TOPIC=file/topic\n")

    env = layered_env({"TRACKER_BROKER": "process-broker"})

    assert env["TRACKER_BROKER"] == "process-broker"
    assert env["TRACKER_TOPIC"] == "file/topic"
    assert "TRACKER_TOPIC" not in os.environ
    assert tracker_payload_from_env(env)["broker"] == "process-broker"
