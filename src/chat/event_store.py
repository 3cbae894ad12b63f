"""Short-lived memory of inbound events that were already handled."""

from __future__ import annotations

import time

from .expiring_cache import Clock, ExpiringCache

EVENT_TTL_SECONDS = 3600


class EventDedupStore:
    """Remembers event ids for ``ttl_seconds`` so redeliveries can be dropped.

    Callers gate on ``seen`` and then ``mark_seen``. The two calls are not a
    single atomic step: two deliveries of the same id racing each other can
    both pass the gate.
    """

    def __init__(self, *, ttl_seconds: float = EVENT_TTL_SECONDS, clock: Clock = time.monotonic) -> None:
        self._cache = ExpiringCache(default_ttl=ttl_seconds, clock=clock)

    @staticmethod
    def _key(event_id: str) -> str:
        return f"message_id:{event_id}"

    def seen(self, event_id: str) -> bool:
        return bool(self._cache.get(self._key(event_id), False))

    def mark_seen(self, event_id: str) -> None:
        self._cache.set(self._key(event_id), True)
