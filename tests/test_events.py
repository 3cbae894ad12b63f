"""Unit tests for Lark callback decoding and message normalization."""

import base64
import hashlib
import json
import os

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from relay import MalformedEventError
from relay.events import (
    OtherMessage,
    TextMessage,
    callback_token,
    decrypt_payload,
    parse_header,
    parse_receive_event,
    to_inbound,
    verify_signature,
)

from conftest import NOW_MS


def encrypt_payload(payload, encrypt_key):
    key = hashlib.sha256(encrypt_key.encode()).digest()
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(json.dumps(payload).encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return base64.b64encode(iv + encryptor.update(padded) + encryptor.finalize()).decode()


def test_p2p_text_message(make_event):
    inbound = to_inbound(make_event(text="  hello  "))
    assert inbound == TextMessage(
        message_id="evt-1",
        user_id="u1",
        chat_type="p2p",
        create_time=NOW_MS,
        text="hello",
    )


def test_create_time_string_is_parsed_as_int(make_event):
    assert make_event().message.create_time == NOW_MS


def test_group_message_addressed_to_bot(make_event):
    event = make_event(
        chat_type="group",
        text="@_user_1 /help",
        mentions=[{"key": "@_user_1", "name": "LarkGPT"}],
    )
    inbound = to_inbound(event, bot_name="LarkGPT")
    assert isinstance(inbound, TextMessage)
    assert inbound.text == "/help"


def test_group_message_for_someone_else_is_ignored(make_event):
    event = make_event(
        chat_type="group",
        text="@_user_1 hi",
        mentions=[{"key": "@_user_1", "name": "Alice"}],
    )
    assert to_inbound(event, bot_name="LarkGPT") is None


def test_group_message_without_mentions_is_ignored(make_event):
    assert to_inbound(make_event(chat_type="group"), bot_name="LarkGPT") is None


def test_group_mention_accepted_when_bot_name_unknown(make_event):
    event = make_event(chat_type="group", mentions=[{"key": "@_user_1", "name": "Anyone"}])
    assert isinstance(to_inbound(event, bot_name=None), TextMessage)


def test_unknown_chat_type_is_ignored(make_event):
    assert to_inbound(make_event(chat_type="topic")) is None


def test_non_text_message_maps_to_other(make_event):
    inbound = to_inbound(make_event(message_type="image", content='{"image_key": "k"}'))
    assert isinstance(inbound, OtherMessage)
    assert inbound.message_type == "image"


def test_non_json_content_is_malformed(make_event):
    with pytest.raises(MalformedEventError):
        to_inbound(make_event(content="not json"))


def test_user_id_fallbacks(make_event):
    assert make_event(user_id=None).user_id == "ou_1"
    assert make_event(user_id=None, open_id=None).user_id == "common"


def test_parse_receive_event_rejects_missing_fields():
    with pytest.raises(MalformedEventError):
        parse_receive_event({"event": {"sender": {}, "message": {"message_id": "m"}}})


def test_parse_header(make_callback):
    header = parse_header(make_callback())
    assert header.event_type == "im.message.receive_v1"
    assert parse_header({"type": "url_verification"}) is None


def test_callback_token_v1_and_v2(make_callback):
    assert callback_token(make_callback(token="abc")) == "abc"
    assert callback_token({"type": "url_verification", "token": "v1"}) == "v1"


def test_decrypt_round_trip():
    payload = {"challenge": "ajls384kdjx98XX", "type": "url_verification"}
    encrypted = encrypt_payload(payload, "test key")
    assert decrypt_payload(encrypted, "test key") == payload


def test_decrypt_with_wrong_key_fails():
    encrypted = encrypt_payload({"a": 1}, "right key")
    with pytest.raises(MalformedEventError):
        decrypt_payload(encrypted, "wrong key")


def test_decrypt_garbage_fails():
    with pytest.raises(MalformedEventError):
        decrypt_payload("!!!not base64!!!", "key")


def test_verify_signature():
    body = b'{"encrypt": "abc"}'
    signature = hashlib.sha256(b"1700000000" + b"nonce" + b"key" + body).hexdigest()
    assert verify_signature(timestamp="1700000000", nonce="nonce", encrypt_key="key", body=body, signature=signature)
    assert not verify_signature(timestamp="1700000000", nonce="other", encrypt_key="key", body=body, signature=signature)
