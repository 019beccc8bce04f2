"""
Per-client rate limiting for the proxy routes.

Sliding window log: each client address keeps the timestamps of its
requests inside the current window. A request is rejected once the
window already holds ``max_requests`` entries.
"""

import time
import logging
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict

from .errors import RateLimited

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._last_sweep = clock()

    def _prune(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, client: str) -> int:
        """
        Record a request for ``client``.

        Returns:
            Requests remaining in the current window.

        Raises:
            RateLimited: the client is over quota. The request is not recorded.
        """
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.window_seconds:
                self._sweep_idle(now)
            hits = self._hits.setdefault(client, deque())
            self._prune(hits, now)

            if len(hits) >= self.max_requests:
                retry_after = hits[0] + self.window_seconds - now
                logger.warning(f"[RateLimit] {client} over quota ({self.max_requests}/{self.window_seconds}s)")
                raise RateLimited(retry_after=int(retry_after) + 1)

            hits.append(now)
            return self.max_requests - len(hits)

    def remaining(self, client: str) -> int:
        with self._lock:
            hits = self._hits.get(client)
            if not hits:
                return self.max_requests
            self._prune(hits, self._clock())
            return self.max_requests - len(hits)

    def sweep(self) -> int:
        """Drop clients with no requests in the current window."""
        with self._lock:
            return self._sweep_idle(self._clock())

    def _sweep_idle(self, now: float) -> int:
        """Assumes lock held. Runs from hit() at most once per window."""
        idle = []
        for client, hits in self._hits.items():
            self._prune(hits, now)
            if not hits:
                idle.append(client)
        for client in idle:
            del self._hits[client]
        self._last_sweep = now
        if idle:
            logger.debug(f"[RateLimit] Dropped {len(idle)} idle clients")
        return len(idle)
