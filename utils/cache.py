from __future__ import annotations
import threading
from concurrent.futures import Future
from time import time
from typing import Any, Callable, Dict, Optional, Tuple


def normalize_ticker(ticker: str) -> str:
    return (ticker or '').strip().upper()


class TTLCache:
    """TTL cache for scraped dividend results, keyed by upper-cased ticker.

    Expiry is lazy: stale entries are dropped when read, or swept when the
    store is full. ``get_or_load`` coalesces concurrent misses for the same
    ticker into one loader call (single-flight); every caller waiting on that
    flight gets the same result or the same exception. Failures are not cached.
    """

    def __init__(self, ttl_seconds: int = 60, maxsize: int = 1024,
                 clock: Callable[[], float] = time):
        self.ttl = ttl_seconds
        self.maxsize = maxsize
        self._clock = clock
        self._lock = threading.Lock()
        # ticker -> (expires_at, value)
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._inflight: Dict[str, Future] = {}
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str):
        item = self._store.get(key)
        if not item:
            return None
        expires_at, val = item
        if self._clock() >= expires_at:
            self._store.pop(key, None)
            return None
        return val

    def get(self, ticker: str):
        key = normalize_ticker(ticker)
        with self._lock:
            val = self._lookup(key)
            if val is None:
                self._misses += 1
            else:
                self._hits += 1
            return val

    def put(self, ticker: str, value: Any, ttl: Optional[float] = None):
        key = normalize_ticker(ticker)
        ttl = self.ttl if ttl is None else ttl
        with self._lock:
            if key not in self._store and len(self._store) >= self.maxsize:
                self._sweep_locked()
                if len(self._store) >= self.maxsize:
                    soonest = min(self._store.items(), key=lambda kv: kv[1][0])[0]
                    self._store.pop(soonest, None)
            self._store[key] = (self._clock() + ttl, value)

    def invalidate(self, ticker: str) -> bool:
        key = normalize_ticker(ticker)
        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_all(self) -> int:
        with self._lock:
            n = len(self._store)
            self._store.clear()
            return n

    def _sweep_locked(self) -> int:
        now = self._clock()
        stale = [k for k, (expires_at, _) in self._store.items() if now >= expires_at]
        for k in stale:
            del self._store[k]
        return len(stale)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked()

    def get_or_load(self, ticker: str, loader: Callable[[str], Any],
                    ttl: Optional[float] = None) -> Tuple[Any, bool]:
        """Return ``(value, cached)``, calling ``loader(key)`` at most once per
        concurrent miss on the same key."""
        key = normalize_ticker(ticker)
        with self._lock:
            val = self._lookup(key)
            if val is not None:
                self._hits += 1
                return val, True
            self._misses += 1
            flight = self._inflight.get(key)
            leader = flight is None
            if leader:
                flight = Future()
                self._inflight[key] = flight

        if not leader:
            return flight.result(), False

        try:
            val = loader(key)
        except BaseException as exc:
            flight.set_exception(exc)
            raise
        else:
            self.put(key, val, ttl)
            flight.set_result(val)
            return val, False
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'keys': len(self._store),
                'hits': self._hits,
                'misses': self._misses,
                'inflight': len(self._inflight),
            }
