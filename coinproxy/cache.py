# coinproxy/cache.py
# Purpose: In-memory freshness cache for normalized upstream payloads.
# Why: Bound provider call volume and latency; the key space is small (tracked assets x ranges).
# Pitfalls: Not persistent; resets if the process restarts. Entries are replaced, never deleted.

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, NamedTuple


class CacheKey(NamedTuple):
    """Deterministic key derived only from request parameters."""

    query: str  # "prices" | "chart" | "history" | "tokens"
    assets: tuple[str, ...]
    range: str | None = None  # None means the caller did not specify one


@dataclass(frozen=True)
class CacheEntry:
    payload: Any
    fetched_at: float  # epoch seconds
    ttl: float  # seconds

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl

    def remaining(self, now: float) -> float:
        return max(0.0, self.ttl - self.age(now))


class FreshnessCache:
    """
    key -> CacheEntry, with one lock per key.

    get() returns whatever entry exists, fresh or not; callers decide what to do
    with a stale one. put() swaps in a whole new entry.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._locks: dict[CacheKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    def get(self, key: CacheKey) -> CacheEntry | None:
        with self._lock_for(key):
            return self._entries.get(key)

    def put(self, key: CacheKey, payload: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(payload=payload, fetched_at=self._clock(), ttl=float(ttl))
        with self._lock_for(key):
            self._entries[key] = entry
        return entry

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        now = self._clock()
        entries = list(self._entries.values())
        return {
            "entries": len(entries),
            "fresh": sum(1 for e in entries if e.is_fresh(now)),
        }
