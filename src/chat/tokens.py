"""Token counting for prompt budgeting."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import tiktoken

logger = logging.getLogger(__name__)

FALLBACK_ENCODING = "cl100k_base"


class Encoding(Protocol):
    def encode(self, text: str, **kwargs: Any) -> list[int]: ...


class TokenCounter:
    """Counts tokens with the tiktoken encoding used by ``model``.

    The encoding is resolved on first use. Unknown model names fall back to
    ``cl100k_base``.
    """

    def __init__(self, model: Optional[str] = None, *, encoding: Optional[Encoding] = None) -> None:
        self.model = model
        self._encoding = encoding

    @property
    def encoding(self) -> Encoding:
        if self._encoding is None:
            self._encoding = _resolve_encoding(self.model)
        return self._encoding

    def count(self, text: str) -> int:
        if not text:
            return 0
        # Special-token markers in user text are counted as plain text.
        return len(self.encoding.encode(text, disallowed_special=()))

    __call__ = count


def _resolve_encoding(model: Optional[str]) -> Encoding:
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            logger.warning("No tiktoken encoding known for %s, using %s", model, FALLBACK_ENCODING)
    return tiktoken.get_encoding(FALLBACK_ENCODING)
