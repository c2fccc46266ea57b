"""
Durable key-value store for the tracker agent.

A single JSON object on disk mapping slot names to lists of strings. Every
write replaces the whole file atomically (temp + fsync + rename) under an
exclusive lock; every read parses the whole file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from tracker_agent.errors import StoreError
from tracker_agent.paths import get_paths

logger = logging.getLogger(__name__)


def _fsync_dir(path: Path) -> None:
    """Ensure directory metadata is flushed for durability."""
    fd = os.open(str(path), os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class KeyValueStore:
    """
    String-list slots persisted in one JSON file.

    Defaults to {base_dir}/data/store.json with its lock file beside it.
    """

    def __init__(self, path: Optional[str] = None, lock_path: Optional[str] = None) -> None:
        if path is None:
            paths = get_paths()
            self.path = paths.store_path
            self.lock_path = paths.store_lock_path
        else:
            self.path = Path(path)
            self.lock_path = Path(lock_path) if lock_path else self.path.with_name(self.path.name + ".lock")

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            logger.error("Store file is corrupted, treating as empty: %s", exc)
            return {}
        except OSError as exc:
            logger.error("Failed to read store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store file is not an object, treating as empty")
            return {}
        return data

    def get_string_list(self, key: str) -> Optional[list[str]]:
        """
        Return the list stored under key, or None if the slot is absent.

        Non-string items are dropped; a slot holding something other than a
        list reads as absent.
        """
        value = self._read_all().get(key)
        if value is None:
            return None
        if not isinstance(value, list):
            logger.warning("Store slot %s is not a list, ignoring", key)
            return None
        return [item for item in value if isinstance(item, str)]

    def set_string_list(self, key: str, values: list[str]) -> None:
        """
        Replace the slot with exactly values.

        Raises:
            StoreError: If the directory cannot be created or the write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create {self.path.parent}") from exc

        try:
            # Lazy import: only POSIX has fcntl
            import fcntl  # type: ignore

            with self.lock_path.open("w") as lockf:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)

                data = self._read_all()
                data[key] = list(values)

                with tempfile.NamedTemporaryFile(
                    mode="w",
                    encoding="utf-8",
                    delete=False,
                    dir=str(self.path.parent),
                ) as tf:
                    json.dump(data, tf)
                    tf.flush()
                    os.fsync(tf.fileno())
                    tmp_path = Path(tf.name)

                os.replace(tmp_path, self.path)
                _fsync_dir(self.path.parent)

                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

            logger.debug("Saved %d entries to slot %s", len(values), key)
        except Exception as exc:
            logger.exception("Failed to save store slot %s", key)
            raise StoreError(f"Failed to save {key}: {exc}") from exc
