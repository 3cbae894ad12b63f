"""Classification of normalized chat text into commands."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

RESET = "/reset"
HELP = "/help"
IMAGE_PREFIX = "/img "

_MENTION_RE = re.compile(r"@_user_\d+")


@dataclass(frozen=True)
class ResetCommand:
    pass


@dataclass(frozen=True)
class HelpCommand:
    pass


@dataclass(frozen=True)
class ImageCommand:
    prompt: str


@dataclass(frozen=True)
class ChatMessage:
    text: str


@dataclass(frozen=True)
class EmptyMessage:
    pass


Command = Union[ResetCommand, HelpCommand, ImageCommand, ChatMessage, EmptyMessage]


def normalize_text(text: str) -> str:
    """Strip platform mention placeholders (``@_user_1``) and surrounding whitespace."""
    return _MENTION_RE.sub("", text or "").strip()


def classify(text: str) -> Command:
    """Map already-normalized text to exactly one command variant."""
    if not text:
        return EmptyMessage()
    if text == RESET:
        return ResetCommand()
    if text == HELP:
        return HelpCommand()
    if text.startswith(IMAGE_PREFIX):
        prompt = text[len(IMAGE_PREFIX):].strip()
        if prompt:
            return ImageCommand(prompt=prompt)
    return ChatMessage(text=text)
