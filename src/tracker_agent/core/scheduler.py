"""
Periodic ticker: calls a callback every interval_s until cancelled.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """
    Fixed-interval timer on a daemon thread. The first call happens one
    interval after start(). The callback should only hand work off (the
    controller posts a tick command); exceptions are logged and the ticker
    keeps running.
    """

    def __init__(self, interval_s: float, callback: Callable[[], None], *, name: str = "tracker-ticker") -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.interval_s = interval_s
        self._callback = callback
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._thread:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.debug("Ticker started (every %ss)", self.interval_s)

    def cancel(self) -> None:
        if not self._thread:
            return
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                logger.warning("Ticker thread did not stop within timeout")
        self._thread = None
        logger.debug("Ticker cancelled")

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self.interval_s):
            try:
                self._callback()
            except Exception:
                logger.exception("Ticker callback failed")
