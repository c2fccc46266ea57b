"""
Network reachability probe: resolve a well-known host with a short deadline.
"""

from __future__ import annotations

import logging
import socket
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

logger = logging.getLogger(__name__)


class DnsReachabilityProbe:
    """
    Reports the internet reachable when host resolves to at least one address
    within timeout_s. getaddrinfo has no timeout of its own, so the lookup runs
    on a helper thread and the caller stops waiting at the deadline.

    At most one lookup is outstanding. A lookup that outlives its deadline
    stays pending, and later calls wait on it again instead of queueing
    another one behind a hung resolver.
    """

    def __init__(self, host: str = "google.com", *, timeout_s: float = 3.0) -> None:
        self.host = host
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reachability")
        self._pending: Optional[Future] = None

    def __call__(self) -> bool:
        future = self._pending
        if future is None or future.done():
            future = self._executor.submit(socket.getaddrinfo, self.host, None)
            self._pending = future
        else:
            logger.debug("Reachability lookup for %s still pending", self.host)
        try:
            infos = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            logger.debug("Reachability lookup for %s timed out", self.host)
            return False
        except OSError as exc:
            logger.debug("Reachability lookup for %s failed: %s", self.host, exc)
            return False
        finally:
            if future.done():
                self._pending = None
        return any(info[4] and info[4][0] for info in infos)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
