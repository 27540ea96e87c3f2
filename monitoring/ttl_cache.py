from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar


T = TypeVar("T")


def cache_key(environment: str, time_range: str) -> str:
    return f"{environment}|{time_range}"


class _Flight:
    """One in-flight refresh of a key. Waiters re-raise its error instead of retrying."""

    __slots__ = ("done", "error")

    def __init__(self) -> None:
        self.done = False
        self.error: Optional[Exception] = None


@dataclass(frozen=True)
class CacheGetResult(Generic[T]):
    value: T
    cache_hit: bool


class TtlCache(Generic[T]):
    """
    Small in-memory LRU cache with a fixed per-instance TTL and per-key refresh coalescing.

    - Entries are stored as `(value, (stored_at, ttl))` and are readable while `now - stored_at < ttl`.
    - Expired entries are treated as absent and dropped on access; capacity pressure evicts the
      least recently used key.
    - `check(key, bypass=True)` always misses but leaves the stored entry alone.
    - `get()` coalesces concurrent refreshes of the same key: late callers wait for the in-flight
      refresh and then read its result, or re-raise its error. A bypassing caller always runs its
      own refresh.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = 100,
        time_fn: Callable[[], float] = time.monotonic,
        refresh_wait_seconds: float = 60.0,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if refresh_wait_seconds <= 0:
            raise ValueError("refresh_wait_seconds must be > 0")
        self._ttl_seconds = float(ttl_seconds)
        self._max_entries = int(max_entries)
        self._time_fn = time_fn
        self._refresh_wait_seconds = float(refresh_wait_seconds)
        self._entries: "OrderedDict[str, Tuple[T, Tuple[float, float]]]" = OrderedDict()
        self._refreshing: Dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)

    @property
    def ttl_seconds(self) -> float:
        return float(self._ttl_seconds)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: str) -> Optional[T]:
        # Caller holds the lock.
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, (stored_at, ttl) = entry
        if self._time_fn() - stored_at >= ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def _store(self, key: str, value: T) -> None:
        # Caller holds the lock.
        self._entries[key] = (value, (self._time_fn(), self._ttl_seconds))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def check(self, key: str, *, bypass: bool = False) -> Optional[T]:
        if bypass:
            return None
        with self._lock:
            return self._lookup(key)

    def set(self, key: str, value: T) -> T:
        with self._lock:
            self._store(key, value)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def get(self, key: str, refresh_fn: Callable[[], T], *, force_refresh: bool = False) -> CacheGetResult[T]:
        flight: Optional[_Flight] = None
        with self._lock:
            while not force_refresh:
                cached = self._lookup(key)
                if cached is not None:
                    return CacheGetResult(value=cached, cache_hit=True)

                pending = self._refreshing.get(key)
                if pending is None:
                    flight = _Flight()
                    self._refreshing[key] = flight
                    break

                if not self._cond.wait_for(lambda: pending.done, timeout=self._refresh_wait_seconds):
                    # The in-flight refresh is taking too long; refresh alongside it.
                    break
                if pending.error is not None:
                    raise pending.error

        try:
            value = refresh_fn()
        except Exception as exc:
            if flight is not None:
                self._finish(key, flight, error=exc)
            raise

        with self._lock:
            self._store(key, value)
        if flight is not None:
            self._finish(key, flight)
        return CacheGetResult(value=value, cache_hit=False)

    def _finish(self, key: str, flight: _Flight, *, error: Optional[Exception] = None) -> None:
        with self._lock:
            flight.error = error
            flight.done = True
            if self._refreshing.get(key) is flight:
                del self._refreshing[key]
            self._cond.notify_all()
