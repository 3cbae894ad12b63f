"""Lark event callback models and their normalization into inbound messages."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pydantic import BaseModel, ValidationError

from chat.commands import normalize_text

from .errors import MalformedEventError

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"
DEFAULT_USER_ID = "common"
HANDLED_CHAT_TYPES = ("p2p", "group")


# ---------------------------------------------------------------------------
# Pydantic models for the callback payload
# ---------------------------------------------------------------------------


class SenderId(BaseModel):
    user_id: Optional[str] = None
    open_id: Optional[str] = None
    union_id: Optional[str] = None


class Sender(BaseModel):
    sender_id: Optional[SenderId] = None
    sender_type: Optional[str] = None


class Mention(BaseModel):
    key: str = ""
    name: str = ""


class Message(BaseModel):
    message_id: str
    chat_id: Optional[str] = None
    chat_type: str
    message_type: str
    content: str = ""
    create_time: int  # milliseconds since epoch
    mentions: Optional[List[Mention]] = None


class ReceiveMessageEvent(BaseModel):
    sender: Sender
    message: Message

    @property
    def user_id(self) -> str:
        ids = self.sender.sender_id
        if ids is None:
            return DEFAULT_USER_ID
        return ids.user_id or ids.open_id or DEFAULT_USER_ID


class EventHeader(BaseModel):
    event_id: Optional[str] = None
    event_type: str
    create_time: Optional[str] = None
    token: Optional[str] = None
    app_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Normalized inbound messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextMessage:
    message_id: str
    user_id: str
    chat_type: str
    create_time: int
    text: str


@dataclass(frozen=True)
class OtherMessage:
    message_id: str
    user_id: str
    chat_type: str
    create_time: int
    message_type: str


InboundMessage = Union[TextMessage, OtherMessage]


# ---------------------------------------------------------------------------
# Callback decoding
# ---------------------------------------------------------------------------


def verify_signature(
    *,
    timestamp: str,
    nonce: str,
    encrypt_key: str,
    body: bytes,
    signature: str,
) -> bool:
    """Check ``X-Lark-Signature``: sha256 over timestamp + nonce + key + raw body."""
    digest = hashlib.sha256((timestamp + nonce + encrypt_key).encode("utf-8") + body).hexdigest()
    return hmac.compare_digest(digest, signature)


def decrypt_payload(encrypted: str, encrypt_key: str) -> Dict[str, Any]:
    """Decrypt an ``{"encrypt": ...}`` callback body (AES-256-CBC, IV prefixed)."""
    key = hashlib.sha256(encrypt_key.encode("utf-8")).digest()
    try:
        raw = base64.b64decode(encrypted)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEventError(f"Encrypted payload is not base64: {exc}") from exc
    if len(raw) < 32 or len(raw) % 16:
        raise MalformedEventError("Encrypted payload has an invalid length.")

    iv, ciphertext = raw[:16], raw[16:]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        plain = unpadder.update(padded) + unpadder.finalize()
        payload = json.loads(plain.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedEventError(f"Could not decrypt event payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedEventError("Decrypted payload is not a JSON object.")
    return payload


def callback_token(payload: Dict[str, Any]) -> Optional[str]:
    """Verification token of a v2 (``header.token``) or v1 (``token``) callback."""
    header = payload.get("header")
    if isinstance(header, dict) and header.get("token"):
        return header["token"]
    return payload.get("token")


def parse_header(payload: Dict[str, Any]) -> Optional[EventHeader]:
    header = payload.get("header")
    if not isinstance(header, dict):
        return None
    try:
        return EventHeader.model_validate(header)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid event header: {exc}") from exc


def parse_receive_event(payload: Dict[str, Any]) -> ReceiveMessageEvent:
    try:
        return ReceiveMessageEvent.model_validate(payload.get("event") or {})
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid message event: {exc}") from exc


def _addresses_bot(message: Message, bot_name: Optional[str]) -> bool:
    if not message.mentions:
        return False
    if not bot_name:
        return True
    return message.mentions[0].name == bot_name


def _extract_text(content: str) -> str:
    try:
        body = json.loads(content)
    except ValueError as exc:
        raise MalformedEventError(f"Message content is not JSON: {content[:80]!r}") from exc
    if not isinstance(body, dict):
        raise MalformedEventError("Message content is not a JSON object.")
    text = body.get("text", "")
    if not isinstance(text, str):
        raise MalformedEventError("Message text is not a string.")
    return text


def to_inbound(event: ReceiveMessageEvent, *, bot_name: Optional[str] = None) -> Optional[InboundMessage]:
    """Normalize a receive event; ``None`` means the message is not meant for the bot.

    Direct (``p2p``) chats are always handled, group chats only when the first
    mention is the bot, and any other chat type never. Text content has mention placeholders stripped and is trimmed.
    """
    message = event.message
    if message.chat_type not in HANDLED_CHAT_TYPES:
        return None
    if message.chat_type == "group" and not _addresses_bot(message, bot_name):
        return None

    common = {
        "message_id": message.message_id,
        "user_id": event.user_id,
        "chat_type": message.chat_type,
        "create_time": message.create_time,
    }
    if message.message_type != "text":
        return OtherMessage(message_type=message.message_type, **common)
    return TextMessage(text=normalize_text(_extract_text(message.content)), **common)
