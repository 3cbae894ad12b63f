"""Relay exceptions and the user-facing error formatter."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
import openai

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "[ERROR] The assistant is unavailable now. Please try again later."


class RelayError(RuntimeError):
    """Raised for local failures while serving a message (missing image URL, upload key...)."""


class LarkAPIError(RelayError):
    """Raised when the Lark Open API answers with a non-zero ``code``."""

    def __init__(self, code: int, msg: str) -> None:
        super().__init__(f"Lark API error {code}: {msg}")
        self.code = code
        self.msg = msg


class MalformedEventError(ValueError):
    """Raised when an inbound callback cannot be decoded into a message."""


def _dump_body(body: Any) -> str:
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body, ensure_ascii=False)
    except TypeError:
        return str(body)


def format_error(error: BaseException) -> str:
    """Turn an exception into the short diagnostic that is replied to the user."""
    if isinstance(error, openai.APIStatusError):
        body = error.body if error.body is not None else error.response.text
        message = f"[ERROR:{error.status_code}] {_dump_body(body)}"
    elif isinstance(error, httpx.HTTPStatusError):
        message = f"[ERROR:{error.response.status_code}] {error.response.text}"
    elif str(error):
        message = f"[ERROR] {error}"
    else:
        logger.warning("[ERROR] Unknown error occurred: %r", error)
        return UNAVAILABLE_MESSAGE
    logger.warning(message)
    return message
