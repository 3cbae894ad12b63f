"""Shared fixtures: fake Lark/OpenAI collaborators and event factories."""

import json

import pytest

from app_config import RelaySettings
from chat import ContextBuilder, EventDedupStore, SessionStore
from relay import LarkRelay
from relay.events import ReceiveMessageEvent

NOW_MS = 1_700_000_000_000


def count_words(text):
    """Deterministic stand-in tokenizer: one token per whitespace-separated word."""
    return len(text.split())


class FakeMessenger:
    def __init__(self):
        self.replies = []
        self.image_replies = []
        self.uploads = []
        self.image_key = "img_v2_key"
        self.fail_reply = False

    async def reply(self, message_id, text):
        if self.fail_reply:
            raise RuntimeError("lark is down")
        self.replies.append((message_id, text))

    async def reply_image(self, message_id, image_key):
        self.image_replies.append((message_id, image_key))

    async def upload_image(self, image):
        self.uploads.append(image)
        return self.image_key


class FakeGenerator:
    def __init__(self):
        self.calls = []
        self.image_prompts = []
        self.answer = "hello there"
        self.error = None
        self.image = b"\x89PNG fake"

    async def complete(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.answer

    async def generate_image(self, prompt):
        self.image_prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.image


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def relay_settings():
    return RelaySettings(init_command="SYS", help_message="HELP TEXT")


@pytest.fixture
def make_relay(messenger, generator, sessions, relay_settings):
    """Factory so tests can tweak settings or the budget before building."""

    def _make(*, settings=None, token_budget=1000, bot_name="LarkGPT"):
        settings = settings or relay_settings
        builder = ContextBuilder(
            sessions,
            preamble=settings.init_command,
            token_budget=token_budget,
            count_tokens=count_words,
        )
        return LarkRelay(
            messenger=messenger,
            generator=generator,
            sessions=sessions,
            events=EventDedupStore(),
            context_builder=builder,
            settings=settings,
            bot_name=bot_name,
            clock=lambda: NOW_MS / 1000,
        )

    return _make


@pytest.fixture
def relay(make_relay):
    return make_relay()


def _event_body(
    *,
    text="hi",
    message_id="evt-1",
    user_id="u1",
    open_id="ou_1",
    chat_type="p2p",
    message_type="text",
    create_time=NOW_MS,
    mentions=None,
    content=None,
):
    if content is None:
        content = json.dumps({"text": text})
    return {
        "sender": {
            "sender_id": {"user_id": user_id, "open_id": open_id},
            "sender_type": "user",
        },
        "message": {
            "message_id": message_id,
            "chat_id": "oc_1",
            "chat_type": chat_type,
            "message_type": message_type,
            "content": content,
            "create_time": str(create_time),
            "mentions": mentions,
        },
    }


@pytest.fixture
def make_event():
    """Build a validated ``im.message.receive_v1`` event."""

    def _make(**kwargs):
        return ReceiveMessageEvent.model_validate(_event_body(**kwargs))

    return _make


@pytest.fixture
def make_callback():
    """Build a full v2 callback payload as Lark posts it."""

    def _make(*, event_type="im.message.receive_v1", token="verify-token", **kwargs):
        return {
            "schema": "2.0",
            "header": {
                "event_id": "5e3702a84e847582be8db7fb73283c02",
                "event_type": event_type,
                "create_time": str(NOW_MS),
                "token": token,
                "app_id": "cli_9e28cb7ba56a100e",
            },
            "event": _event_body(**kwargs),
        }

    return _make
