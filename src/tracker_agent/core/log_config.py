"""
Apply log level from agent config or env.

Single log level for the whole process. An explicit level (AgentConfig.log_level)
takes precedence over TRACKER_LOG_LEVEL.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    return int(getattr(logging, raw, logging.INFO))


def resolve_level(explicit: Optional[str] = None) -> int:
    """explicit if given, else TRACKER_LOG_LEVEL env, else INFO."""
    if explicit:
        return _parse_level(explicit)
    raw = os.environ.get("TRACKER_LOG_LEVEL", "").strip()
    return _parse_level(raw) if raw else logging.INFO


def configure_logging(explicit: Optional[str] = None) -> None:
    """Install the root handler once and (re)apply the resolved level."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(resolve_level(explicit))
