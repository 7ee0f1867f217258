# hirehub/services/rate_limit.py
"""Sliding-window counters keyed by (subject, action)."""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

from hirehub.core.errors import RateLimitError

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """Allows at most `limit` hits per `window_seconds` for each (subject, action).

    Usage::

        limiter = SlidingWindowLimiter(limit=10, window_seconds=3600)
        limiter.hit(user_id, "resume:evaluate")   # raises RateLimitError when over

    Keys whose newest hit is older than the window are evicted on access and by
    `evict_expired()`; nothing runs in the background.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.limit = limit
        self.window = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}

    def _prune(self, key: Tuple[str, str], now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        cutoff = now - self.window
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return deque()
        return hits

    def check(self, subject: str, action: str) -> bool:
        with self._lock:
            return len(self._prune((subject, action), self._clock())) < self.limit

    def remaining(self, subject: str, action: str) -> int:
        with self._lock:
            return max(0, self.limit - len(self._prune((subject, action), self._clock())))

    def hit(self, subject: str, action: str) -> int:
        """Record one hit and return the hits left in the window."""
        key = (subject, action)
        with self._lock:
            now = self._clock()
            hits = self._prune(key, now)
            if len(hits) >= self.limit:
                retry_after = max(0.0, hits[0] + self.window - now)
                logger.info("Rate limit hit for %s on %s (%d/%d)", subject, action, len(hits), self.limit)
                raise RateLimitError(
                    f"Rate limit exceeded: at most {self.limit} per {int(self.window)}s for {action}",
                    retry_after=retry_after,
                )
            hits.append(now)
            self._hits[key] = hits
            return self.limit - len(hits)

    def reset(self, subject: str, action: str) -> bool:
        with self._lock:
            return self._hits.pop((subject, action), None) is not None

    def evict_expired(self) -> int:
        with self._lock:
            now = self._clock()
            before = len(self._hits)
            for key in list(self._hits):
                self._prune(key, now)
            evicted = before - len(self._hits)
        if evicted:
            logger.debug("Evicted %d expired rate-limit keys", evicted)
        return evicted

    def __len__(self) -> int:
        return len(self._hits)


def build_limiter(limit: int, window_seconds: float):
    """Return a limiter, or None when the limit is disabled (0)."""
    if not limit or limit <= 0:
        return None
    return SlidingWindowLimiter(limit=limit, window_seconds=window_seconds)
