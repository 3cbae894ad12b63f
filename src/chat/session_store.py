"""In-memory per-user conversation history with a sliding expiry."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .expiring_cache import Clock, ExpiringCache

SESSION_TTL_SECONDS = 24 * 3600


@dataclass(frozen=True)
class Turn:
    question: str
    answer: str

    def to_messages(self) -> List[Dict[str, str]]:
        """Return the turn as OpenAI-compatible user/assistant messages."""
        return [
            {"role": "user", "content": self.question},
            {"role": "assistant", "content": self.answer},
        ]


class SessionStore:
    """Maps a user id to its turns, oldest first.

    Every write pushes the expiry ``ttl_seconds`` into the future, so a
    session lives for one TTL after its last turn. Reads of a missing or
    expired user return an empty tuple.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self._cache = ExpiringCache(default_ttl=ttl_seconds, clock=clock)

    @staticmethod
    def _key(user_id: str) -> str:
        return f"session:{user_id}"

    def get(self, user_id: str) -> Tuple[Turn, ...]:
        return self._cache.get(self._key(user_id), ())

    def append(self, user_id: str, turn: Turn) -> Tuple[Turn, ...]:
        """Add ``turn`` to the end of the user's history and refresh its TTL."""
        return self._cache.update(
            self._key(user_id),
            lambda turns: tuple(turns) + (turn,),
            default=(),
        )

    def delete(self, user_id: str) -> None:
        """Forget the user's history; a no-op when there is none."""
        self._cache.delete(self._key(user_id))
