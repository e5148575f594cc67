from __future__ import annotations
import threading
from time import time
from typing import Callable, Dict, NamedTuple, Tuple


class RateLimitResult(NamedTuple):
    allowed: bool
    limit: int
    remaining: int
    reset_in: int  # seconds until the current window ends


class FixedWindowRateLimiter:
    """Thread-safe fixed-window request counter per client key."""

    def __init__(self, window_seconds: int = 900, max_requests: int = 100,
                 clock: Callable[[], float] = time):
        self.window = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (window_start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
            if len(self._windows) > 10_000:
                self._prune(now)
        reset_in = max(0, int(round(start + self.window - now)))
        remaining = max(0, self.max_requests - count)
        return RateLimitResult(count <= self.max_requests, self.max_requests, remaining, reset_in)

    def _prune(self, now: float):
        for k in [k for k, (start, _) in self._windows.items() if now - start >= self.window]:
            del self._windows[k]

    def reset(self):
        with self._lock:
            self._windows.clear()
