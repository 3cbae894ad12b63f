"""Writes finished question/answer exchanges back into the session store."""

from __future__ import annotations

from typing import Tuple

from .session_store import SessionStore, Turn


class TurnRecorder:
    def __init__(self, sessions: SessionStore) -> None:
        self.sessions = sessions

    def record(self, user_id: str, question: str, answer: str) -> Tuple[Turn, ...]:
        """Append the exchange to the user's current history (not the one used for context)."""
        return self.sessions.append(user_id, Turn(question=question, answer=answer))
