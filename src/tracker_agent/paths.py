"""
Central path configuration for the tracker agent.

All filesystem paths are derived from a single base directory.

Path Structure:
    ~/.local/share/tracker-agent/
    └── data/              (Persistent data)
        ├── store.json         (key-value store holding the offline queue)
        └── store.json.lock

Usage:
    from tracker_agent.paths import get_paths

    paths = get_paths()
    store_path = paths.store_path
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True, slots=True)
class Paths:
    """
    Immutable container for all filesystem paths used by the agent.

    All paths are derived from base_dir.
    """

    base_dir: Path
    data_dir: Path
    store_path: Path

    @property
    def store_lock_path(self) -> Path:
        """Path to the key-value store lock file."""
        return self.data_dir / "store.json.lock"


def _default_base_dir() -> Path:
    base_str = os.environ.get("TRACKER_BASE_DIR")
    if base_str:
        return Path(base_str)
    data_home = os.environ.get("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
    return Path(data_home) / "tracker-agent"


def build_paths(base_dir: Optional[Path] = None) -> Paths:
    """
    Build Paths object from base directory.

    Args:
        base_dir: Base directory for all agent files.
                  Defaults to TRACKER_BASE_DIR, else $XDG_DATA_HOME/tracker-agent.

    Returns:
        Immutable Paths object with all filesystem paths.
    """
    if base_dir is None:
        base_dir = _default_base_dir()

    return Paths(
        base_dir=base_dir,
        data_dir=base_dir / "data",
        store_path=base_dir / "data" / "store.json",
    )


def ensure_dirs(paths: Paths) -> None:
    """
    Create all required directories if they don't exist.

    data_dir is created 0o750, base_dir 0o755.

    Raises:
        OSError: If directory creation fails due to permissions or other issues.
    """
    for dir_path, mode in [
        (paths.base_dir, 0o755),
        (paths.data_dir, 0o750),
    ]:
        dir_path.mkdir(parents=True, exist_ok=True)
        # mkdir may apply umask
        dir_path.chmod(mode)


# Global instance (lazy-initialized)
_paths: Optional[Paths] = None


def get_paths() -> Paths:
    """
    Get the global Paths instance.

    Lazily initializes on first call using build_paths() defaults.
    """
    global _paths
    if _paths is None:
        _paths = build_paths()
    return _paths


def set_paths(paths: Paths) -> None:
    """Set the global Paths instance."""
    global _paths
    _paths = paths


def reset_paths() -> None:
    """Reset the global Paths instance so get_paths() rebuilds from defaults."""
    global _paths
    _paths = None
