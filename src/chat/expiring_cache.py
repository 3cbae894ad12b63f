"""Tiny in-memory key/value cache with per-key expiry."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

Clock = Callable[[], float]


class ExpiringCache:
    """Process-local mapping where every entry carries its own deadline.

    Expired entries are treated as absent on read and swept lazily on write.
    All operations hold one lock, so ``update`` is an atomic
    read-modify-write for a single key.
    """

    def __init__(
        self,
        *,
        default_ttl: float,
        clock: Clock = time.monotonic,
        sweep_interval: float = 600.0,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.RLock()
        self._last_sweep = clock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            return value

    def __contains__(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if ttl is None:
                ttl = self.default_ttl
            elif ttl <= 0:
                raise ValueError("ttl must be positive")
            now = self._clock()
            self._entries[key] = (value, now + ttl)
            self._maybe_sweep(now)

    def update(
        self,
        key: Hashable,
        fn: Callable[[Any], Any],
        *,
        default: Any = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """Replace the value at ``key`` with ``fn(current)`` and reset its TTL."""
        with self._lock:
            new_value = fn(self.get(key, default))
            self.set(key, new_value, ttl)
            return new_value

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            self.sweep()
            return len(self._entries)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, deadline) in self._entries.items() if deadline <= now]
            for key in expired:
                del self._entries[key]
            self._last_sweep = now
            return len(expired)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self._sweep_interval:
            self.sweep()
