"""Conversation state: sessions, dedup, token budgeting and commands."""

from __future__ import annotations

from .commands import (
    ChatMessage,
    Command,
    EmptyMessage,
    HelpCommand,
    ImageCommand,
    ResetCommand,
    classify,
    normalize_text,
)
from .context_builder import (
    ContextBuilder,
    ConversationContext,
    count_message_tokens,
    select_recent_turns,
)
from .event_store import EventDedupStore
from .expiring_cache import ExpiringCache
from .session_store import SessionStore, Turn
from .tokens import TokenCounter
from .turn_recorder import TurnRecorder

__all__ = [
    "ChatMessage",
    "Command",
    "ContextBuilder",
    "ConversationContext",
    "EmptyMessage",
    "EventDedupStore",
    "ExpiringCache",
    "HelpCommand",
    "ImageCommand",
    "ResetCommand",
    "SessionStore",
    "TokenCounter",
    "Turn",
    "TurnRecorder",
    "classify",
    "count_message_tokens",
    "normalize_text",
    "select_recent_turns",
]
