"""Event handler that relays Lark chat messages to the generation API."""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from app_config import RelaySettings
from chat import (
    ChatMessage,
    ContextBuilder,
    EmptyMessage,
    EventDedupStore,
    HelpCommand,
    ImageCommand,
    ResetCommand,
    SessionStore,
    TurnRecorder,
    classify,
)

from .errors import MalformedEventError, RelayError, format_error
from .events import OtherMessage, ReceiveMessageEvent, TextMessage, to_inbound

logger = logging.getLogger(__name__)

RESET_REPLY = "[COMMAND] Session reset successfully."


class Messenger(Protocol):
    async def reply(self, message_id: str, text: str) -> Any: ...

    async def reply_image(self, message_id: str, image_key: str) -> Any: ...

    async def upload_image(self, image: bytes) -> str: ...


class Generator(Protocol):
    async def complete(self, messages: Sequence[Dict[str, Any]]) -> str: ...

    async def generate_image(self, prompt: str) -> bytes: ...


class LarkRelay:
    """Turns one inbound message event into at most one reply.

    Gates, in order: staleness, duplicate delivery, addressing. Every command
    path ends in a reply or a silent drop; failures are replied as a short
    ``[ERROR...]`` diagnostic.
    """

    def __init__(
        self,
        *,
        messenger: Messenger,
        generator: Generator,
        sessions: SessionStore,
        events: EventDedupStore,
        context_builder: ContextBuilder,
        settings: RelaySettings,
        bot_name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.messenger = messenger
        self.generator = generator
        self.sessions = sessions
        self.events = events
        self.context_builder = context_builder
        self.recorder = TurnRecorder(sessions)
        self.settings = settings
        self.bot_name = bot_name
        self._clock = clock
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def is_stale(self, create_time_ms: int, now_ms: Optional[int] = None) -> bool:
        if now_ms is None:
            now_ms = int(self._clock() * 1000)
        return now_ms - create_time_ms > self.settings.stale_after_seconds * 1000

    async def handle_event(self, event: ReceiveMessageEvent, *, now_ms: Optional[int] = None) -> bool:
        """Process a receive event. Returns ``False`` when it was dropped before dispatch."""
        message = event.message
        if self.is_stale(message.create_time, now_ms):
            logger.info("Dropping stale message %s", message.message_id)
            return False

        if self.events.seen(message.message_id):
            logger.info("Dropping duplicate delivery of %s", message.message_id)
            return False
        self.events.mark_seen(message.message_id)

        try:
            inbound = to_inbound(event, bot_name=self.bot_name)
        except MalformedEventError as exc:
            logger.warning("Dropping malformed message %s: %s", message.message_id, exc)
            return False

        if inbound is None:
            return False
        if isinstance(inbound, OtherMessage):
            logger.info(
                "Unsupported %s message %s from %s",
                inbound.message_type,
                inbound.message_id,
                inbound.user_id,
            )
            if self.settings.unsupported_message_reply:
                await self._safe_reply(inbound.message_id, self.settings.unsupported_message_reply)
            return False

        await self.dispatch(inbound)
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, message: TextMessage) -> None:
        command = classify(message.text)
        try:
            if isinstance(command, EmptyMessage):
                if self.settings.empty_message_reply:
                    await self._safe_reply(message.message_id, self.settings.empty_message_reply)
            elif isinstance(command, ResetCommand):
                self.sessions.delete(message.user_id)
                await self._safe_reply(message.message_id, RESET_REPLY)
            elif isinstance(command, HelpCommand):
                await self._safe_reply(message.message_id, self.settings.help_message)
            elif isinstance(command, ImageCommand):
                image_key = await self.create_image(message.user_id, command.prompt)
                await self.messenger.reply_image(message.message_id, image_key)
            elif isinstance(command, ChatMessage):
                answer = await self.complete(message.user_id, command.text)
                await self._safe_reply(message.message_id, answer)
        except Exception as exc:  # every failure becomes a diagnostic reply
            logger.exception("Handling message %s failed", message.message_id)
            await self._safe_reply(message.message_id, format_error(exc))

    async def complete(self, user_id: str, question: str) -> str:
        """Answer ``question`` with the user's history and record the new turn."""
        if not self.settings.serialize_per_user:
            return await self._complete(user_id, question)
        async with self._lock_for(user_id):
            return await self._complete(user_id, question)

    async def _complete(self, user_id: str, question: str) -> str:
        logger.info("Receive from %s: %s", user_id, question)
        context = self.context_builder.build(user_id, question)
        answer = await self.generator.complete(context.to_messages())
        logger.info("Reply to %s: %s", user_id, answer)
        self.recorder.record(user_id, question, answer)
        return answer

    async def create_image(self, user_id: str, prompt: str) -> str:
        logger.info("Receive from %s: /img %s", user_id, prompt)
        image = await self.generator.generate_image(prompt)
        image_key = await self.messenger.upload_image(image)
        if not image_key:
            raise RelayError("Failed to upload image to Lark.")
        logger.info("Reply image to %s: %s", user_id, image_key)
        return image_key

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    async def _safe_reply(self, message_id: str, text: str) -> None:
        try:
            await self.messenger.reply(message_id, text)
        except Exception as exc:  # a failed reply must not fail the event
            logger.warning("Reply to message %s failed: %s", message_id, format_error(exc))
