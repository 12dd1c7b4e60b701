"""
Per-client upload throttling.

Each key remembers the times of its recent accepted uploads; a hit is
allowed while fewer than ``rpm`` of them fall inside the trailing window.
Keys with no hits left in the window are swept at most once per window, so
memory tracks recently active clients only.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


def _expire(hits: Deque[float], cutoff: float) -> int:
    dropped = 0
    while hits and hits[0] <= cutoff:
        hits.popleft()
        dropped += 1
    return dropped


class RateLimiter:
    """Sliding window limiter keyed by client."""

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self.limit = max(1, rpm)
        self.window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + window_seconds

    def __len__(self) -> int:
        """Number of keys currently tracked."""
        with self._lock:
            return len(self._hits)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """
        Record a hit for ``key`` if it is under its limit.

        A refused hit is not recorded, so a client that keeps retrying is
        let back in as soon as its oldest accepted upload leaves the window.
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now - self.window)
                self._next_sweep = now + self.window

            hits = self._hits.setdefault(key, deque())
            _expire(hits, now - self.window)
            oldest = hits[0] if hits else now
            reset_at = oldest + self.window

            if len(hits) >= self.limit:
                return RateLimitResult(False, 0, reset_at, retry_after=max(0.0, reset_at - now))

            hits.append(now)
            return RateLimitResult(True, self.limit - len(hits), reset_at)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def _sweep(self, cutoff: float) -> int:
        dropped = sum(_expire(hits, cutoff) for hits in self._hits.values())
        self._hits = {key: hits for key, hits in self._hits.items() if hits}
        return dropped

    def cleanup_expired(self) -> int:
        """Forget hits older than the window; returns how many were dropped."""
        cutoff = self._clock() - self.window
        with self._lock:
            return self._sweep(cutoff)
