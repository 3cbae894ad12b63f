"""Token-budgeted conversation context assembly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

from .session_store import SessionStore, Turn

TokenCount = Callable[[str], int]
Message = Dict[str, Any]

# Chat-format framing: role and separators around every message, plus the
# tokens that open the assistant reply.
MESSAGE_OVERHEAD = 4
REPLY_PRIMING = 3


def count_message_tokens(
    messages: Iterable[Message],
    count_tokens: TokenCount,
    *,
    message_overhead: int = MESSAGE_OVERHEAD,
    reply_priming: int = REPLY_PRIMING,
) -> int:
    """Return the prompt tokens a chat-completion request spends on ``messages``."""
    total = reply_priming
    for message in messages:
        total += message_overhead + count_tokens(message["content"])
    return total


@dataclass(frozen=True)
class ConversationContext:
    """Everything sent to the model for one question. Never stored."""

    preamble: str
    question: str
    turns: Tuple[Turn, ...] = field(default_factory=tuple)

    def to_messages(self) -> List[Message]:
        """Chat-completion message list: system, history pairs, then the question."""
        messages: List[Message] = [{"role": "system", "content": self.preamble}]
        for turn in self.turns:
            messages.extend(turn.to_messages())
        messages.append({"role": "user", "content": self.question})
        return messages

    def token_count(
        self,
        count_tokens: TokenCount,
        *,
        message_overhead: int = MESSAGE_OVERHEAD,
        reply_priming: int = REPLY_PRIMING,
    ) -> int:
        return count_message_tokens(
            self.to_messages(),
            count_tokens,
            message_overhead=message_overhead,
            reply_priming=reply_priming,
        )


def select_recent_turns(
    history: Sequence[Turn],
    *,
    preamble: str,
    question: str,
    token_budget: int,
    count_tokens: TokenCount,
    message_overhead: int = MESSAGE_OVERHEAD,
    reply_priming: int = REPLY_PRIMING,
) -> Tuple[Turn, ...]:
    """Return the longest suffix of ``history`` whose request fits ``token_budget``.

    The budget is measured on the message list sent to the model, framing
    included. Turns are tried newest first. The first turn that would push the
    request over budget ends the walk, so the result is always contiguous and
    ends with the newest turn (or is empty).
    """

    def cost(messages: Iterable[Message]) -> int:
        return count_message_tokens(
            messages, count_tokens, message_overhead=message_overhead, reply_priming=0
        )

    used = reply_priming + cost(ConversationContext(preamble, question).to_messages())
    kept = 0
    for turn in reversed(history):
        candidate = used + cost(turn.to_messages())
        if candidate > token_budget:
            break
        used = candidate
        kept += 1
    if not kept:
        return ()
    return tuple(history[-kept:])


class ContextBuilder:
    """Builds a :class:`ConversationContext` from a user's stored session."""

    def __init__(
        self,
        sessions: SessionStore,
        *,
        preamble: str,
        token_budget: int,
        count_tokens: TokenCount,
        message_overhead: int = MESSAGE_OVERHEAD,
        reply_priming: int = REPLY_PRIMING,
    ) -> None:
        if token_budget <= 0:
            raise ValueError("token_budget must be positive")
        self.sessions = sessions
        self.preamble = preamble
        self.token_budget = token_budget
        self.count_tokens = count_tokens
        self.message_overhead = message_overhead
        self.reply_priming = reply_priming

    def build(self, user_id: str, question: str) -> ConversationContext:
        history = self.sessions.get(user_id)
        turns = select_recent_turns(
            history,
            preamble=self.preamble,
            question=question,
            token_budget=self.token_budget,
            count_tokens=self.count_tokens,
            message_overhead=self.message_overhead,
            reply_priming=self.reply_priming,
        )
        return ConversationContext(preamble=self.preamble, question=question, turns=turns)
