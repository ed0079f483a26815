"""Explicit read-through cache with per-entry TTLs."""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock
from typing import Generic, Protocol, TypeVar

V = TypeVar("V")


class Cache(Protocol[V]):
    """Capability interface handed to services that cache store reads."""

    def get(self, key: str) -> V | None:
        ...

    def set(self, key: str, value: V, *, ttl_seconds: float) -> None:
        ...

    def invalidate(self, key: str) -> None:
        ...


class InMemoryCache(Generic[V]):
    """Thread-safe process-local cache; entries expire lazily on read."""

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be a positive integer.")
        self._entries: dict[str, tuple[float, V]] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = Lock()

    def get(self, key: str) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V, *, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self.invalidate(key)
            return
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_locked()
            self._entries[key] = (expires_at, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_locked(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self._max_entries:
            # drop the entry closest to expiry
            oldest = min(self._entries, key=lambda key: self._entries[key][0])
            del self._entries[oldest]
