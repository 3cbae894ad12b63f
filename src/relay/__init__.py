"""Lark relay entrypoints."""

from __future__ import annotations

from .errors import LarkAPIError, MalformedEventError, RelayError, format_error
from .handler import RESET_REPLY, LarkRelay

__all__ = [
    "LarkAPIError",
    "LarkRelay",
    "MalformedEventError",
    "RESET_REPLY",
    "RelayError",
    "format_error",
]
