"""
Rate Limiter — per-key sliding window.

Injected into the HTTP layer as a capability (``allow(key, max_requests,
window_s)``) so request handlers and the reconciliation core carry no
module-level counters of their own.

Implementation: in-memory, per process. Resets on restart; with several
workers each one counts separately, so limits are approximate.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from threading import Lock
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class _SlidingWindow:
    """Thread-safe sliding-window counter for a single key."""

    __slots__ = ("_timestamps", "_lock")

    def __init__(self):
        self._timestamps: list[float] = []
        self._lock = Lock()

    def count_and_record(self, window_s: float, now: float) -> int:
        """Prune, record new event, return count AFTER recording."""
        cutoff = now - window_s
        with self._lock:
            self._timestamps = [t for t in self._timestamps if t > cutoff]
            self._timestamps.append(now)
            return len(self._timestamps)

    def is_idle(self, window_s: float, now: float) -> bool:
        with self._lock:
            return not self._timestamps or self._timestamps[-1] <= now - window_s


class RateLimiter:
    """Sliding-window rate limiter keyed by an arbitrary string (IP, user ID)."""

    def __init__(self, cleanup_interval_s: float = 60.0):
        self._windows: Dict[str, _SlidingWindow] = defaultdict(_SlidingWindow)
        self._windows_lock = Lock()
        self._cleanup_interval_s = cleanup_interval_s
        self._last_cleanup = 0.0
        self._max_window_s = 0.0

    def allow(self, key: str, max_requests: int, window_s: float, now: Optional[float] = None) -> bool:
        """Record a request for *key*; return False once it exceeds *max_requests* in *window_s*."""
        now = time.time() if now is None else now
        self._maybe_cleanup(now)
        with self._windows_lock:
            window = self._windows[key]
            self._max_window_s = max(self._max_window_s, window_s)
        count = window.count_and_record(window_s, now)
        if count > max_requests:
            logger.warning(
                "Rate limit exceeded: key=%s count=%d max=%d window_s=%s",
                key, count, max_requests, window_s,
            )
            return False
        return True

    def reset(self) -> None:
        with self._windows_lock:
            self._windows.clear()

    def _maybe_cleanup(self, now: float) -> None:
        """Drop idle keys so the map does not grow without bound."""
        if now - self._last_cleanup < self._cleanup_interval_s:
            return
        self._last_cleanup = now
        with self._windows_lock:
            idle = [k for k, w in self._windows.items() if w.is_idle(self._max_window_s, now)]
            for key in idle:
                del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


# Module-level singleton used by the HTTP layer
rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency; override in tests."""
    return rate_limiter
