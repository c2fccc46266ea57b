"""
Tracker Agent entrypoint.

CLI:
  tracker-agent run                  -> run agent (configured from TRACKER_* env)
  tracker-agent queue [--show|--clear] -> inspect or empty the offline queue
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import threading
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from tracker_agent.core.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("tracker-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


@dataclass
class Runtime:
    shutdown: threading.Event
    reload: threading.Event
    controller: Optional[object] = None
    probe: Optional[object] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    def _hup(signum: int, frame) -> None:
        logger.info("Received signal %s; reloading tracker configuration", signum)
        rt.reload.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _hup)


def _log_event(event) -> None:
    payload = event.payload
    if event.channel == "status":
        extra = {k: v for k, v in payload.items() if k != "status"}
        if "error" in payload:
            logger.warning("[status] %s %s", payload["status"], extra)
        else:
            logger.info("[status] %s %s", payload["status"], extra)
    else:
        logger.info(
            "[sample] lat=%s lon=%s battery=%s sent_at=%s",
            payload.get("latitude"),
            payload.get("longitude"),
            payload.get("battery"),
            payload.get("sent_at"),
        )


def _pump_events(events, stop: threading.Event) -> None:
    """Presentation sink for the headless agent: mirror events to the log."""
    while not stop.is_set():
        event = events.get(timeout=0.5)
        if event is not None:
            _log_event(event)
    for event in events.drain():
        _log_event(event)


def run_agent() -> int:
    """
    Runtime mode: build the pipeline, configure it from env, block until shutdown.
    Returns process exit code.
    """
    from tracker_agent.config import load_config, tracker_payload_from_env
    from tracker_agent.controller import AgentController
    from tracker_agent.core.connection import ConnectionManager
    from tracker_agent.core.events import EventChannel
    from tracker_agent.core.offline_queue import OfflineQueueStore
    from tracker_agent.errors import ConfigError
    from tracker_agent.models import TrackerConfig
    from tracker_agent.paths import ensure_dirs, get_paths
    from tracker_agent.reachability import DnsReachabilityProbe
    from tracker_agent.sensors import SampleProducer, SimulatedSensorSource

    # env files must not shadow these on reload
    process_env = dict(os.environ)

    try:
        cfg = load_config()
        payload = tracker_payload_from_env()
        tracker_cfg = TrackerConfig.from_dict(payload)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    configure_logging(cfg.log_level)
    ensure_dirs(get_paths())

    logger.info("============================================================")
    logger.info("Tracker Agent")
    logger.info("Version: %s", get_version_string())
    logger.info("Device: %s (%s)", tracker_cfg.device_id, tracker_cfg.user)
    logger.info("Broker: %s:%s topic=%s", tracker_cfg.broker, tracker_cfg.port, tracker_cfg.topic)
    logger.info("============================================================")

    # back-to-back fixes after a reconfigure must not report inflated speed
    sim_kwargs = {"min_interval_s": float(tracker_cfg.interval_seconds)}
    if cfg.sim_latitude is not None:
        sim_kwargs["latitude"] = cfg.sim_latitude
    if cfg.sim_longitude is not None:
        sim_kwargs["longitude"] = cfg.sim_longitude

    events = EventChannel()
    probe = DnsReachabilityProbe(cfg.reachability_host, timeout_s=cfg.reachability_timeout_s)
    controller = AgentController(
        store=OfflineQueueStore(),
        producer=SampleProducer(SimulatedSensorSource(tracker_cfg.device_id, **sim_kwargs)),
        events=events,
        connection=ConnectionManager(events, connect_timeout_s=cfg.connect_timeout_s),
        reachability=probe,
    )

    rt = Runtime(shutdown=threading.Event(), reload=threading.Event(), controller=controller, probe=probe)
    _install_signal_handlers(rt)

    pump_stop = threading.Event()
    pump = threading.Thread(target=_pump_events, args=(events, pump_stop), name="tracker-events", daemon=True)
    pump.start()

    controller.start()
    controller.configure(payload)

    logger.info("Agent running (shutdown via SIGINT/SIGTERM, reload via SIGHUP)")

    try:
        while not rt.shutdown.is_set():
            if rt.reload.is_set():
                rt.reload.clear()
                _reload(controller, process_env)
            rt.shutdown.wait(0.5)
    finally:
        _shutdown(rt)
        pump_stop.set()
        pump.join(timeout=2.0)

    return 0


def _reload(controller, process_env: dict[str, str]) -> None:
    """Re-read the env files under the startup process env and reconfigure."""
    from tracker_agent.config import layered_env, tracker_payload_from_env

    controller.configure(tracker_payload_from_env(layered_env(process_env)))


def _shutdown(rt: Runtime) -> None:
    logger.info("Shutting down...")
    if rt.controller:
        try:
            rt.controller.shutdown()
        except Exception:
            logger.exception("Error stopping controller")
    if rt.probe:
        rt.probe.close()
    logger.info("Stopped")


def run_queue(show: bool, clear: bool) -> int:
    from tracker_agent.core.offline_queue import OfflineQueueStore

    store = OfflineQueueStore()
    entries = store.load()
    print(f"pending: {len(entries)}")
    if show:
        for entry in entries:
            print(json.dumps(entry.to_dict(), sort_keys=True))
    if clear:
        store.clear()
        print("queue cleared")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tracker-agent")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run the tracking agent")

    queue_parser = sub.add_parser("queue", help="Inspect the offline queue")
    queue_parser.add_argument("--show", action="store_true", help="Print every queued record")
    queue_parser.add_argument("--clear", action="store_true", help="Drop every queued record")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_agent())

    if args.cmd == "queue":
        raise SystemExit(run_queue(args.show, args.clear))

    raise SystemExit(2)


if __name__ == "__main__":
    main()
