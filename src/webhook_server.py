"""Flask webhook receiving Lark event callbacks, served through uvicorn."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, Optional

import uvicorn
from flask import Flask, jsonify, request
from uvicorn.middleware.wsgi import WSGIMiddleware

from app_config import (
    get_lark_settings,
    get_openai_settings,
    get_relay_settings,
    get_server_settings,
)
from chat import ContextBuilder, EventDedupStore, SessionStore, TokenCounter
from generation import OpenAIGenerator
from lark_client import LarkClient
from relay import LarkRelay, MalformedEventError
from relay.events import (
    MESSAGE_RECEIVE_EVENT,
    callback_token,
    decrypt_payload,
    parse_header,
    parse_receive_event,
    verify_signature,
)

logger = logging.getLogger(__name__)

Submit = Callable[[Coroutine[Any, Any, Any]], Any]


class BackgroundLoop:
    """One asyncio loop on a daemon thread; every event is handled on it.

    Handlers suspended on the generation API do not hold a request thread,
    and all store access happens on this single loop.
    """

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="relay-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "BackgroundLoop":
        self._thread.start()
        return self

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(_log_failure)
        return future

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Event handling crashed", exc_info=exc)


def create_app(
    relay: LarkRelay,
    *,
    submit: Submit,
    encrypt_key: Optional[str] = None,
    verification_token: Optional[str] = None,
) -> Flask:
    app = Flask(__name__)

    @app.post("/event")
    def event_endpoint():
        body = request.get_data()
        try:
            payload = json.loads(body)
        except ValueError:
            app.logger.warning("Ignoring callback with a non-JSON body (%d bytes)", len(body))
            return jsonify({"error": "invalid JSON body"}), 400
        if not isinstance(payload, dict):
            app.logger.warning("Ignoring callback whose body is not a JSON object")
            return jsonify({"error": "invalid JSON body"}), 400

        if encrypt_key:
            if "encrypt" in payload:
                try:
                    payload = decrypt_payload(payload["encrypt"], encrypt_key)
                except MalformedEventError as exc:
                    app.logger.warning("Ignoring undecryptable callback: %s", exc)
                    return jsonify({"error": "invalid encrypted payload"}), 400
            # Lark does not sign the URL verification handshake.
            if payload.get("type") != "url_verification" and not verify_signature(
                timestamp=request.headers.get("X-Lark-Request-Timestamp", ""),
                nonce=request.headers.get("X-Lark-Request-Nonce", ""),
                encrypt_key=encrypt_key,
                body=body,
                signature=request.headers.get("X-Lark-Signature", ""),
            ):
                app.logger.warning("Rejecting callback with a missing or invalid signature")
                return jsonify({"error": "invalid signature"}), 401
        elif "encrypt" in payload:
            app.logger.warning("Encrypted callback received but LARK_ENCRYPT_KEY is not set")
            return jsonify({"error": "encrypt key not configured"}), 400

        if verification_token and callback_token(payload) != verification_token:
            app.logger.warning("Rejecting callback with a wrong verification token")
            return jsonify({"error": "invalid verification token"}), 401

        if payload.get("type") == "url_verification":
            return jsonify({"challenge": payload.get("challenge", "")})

        try:
            header = parse_header(payload)
            if header is None or header.event_type != MESSAGE_RECEIVE_EVENT:
                return jsonify({"code": 0})
            event = parse_receive_event(payload)
        except MalformedEventError as exc:
            app.logger.warning("Dropping malformed callback: %s", exc)
            return jsonify({"code": 0})

        submit(relay.handle_event(event))
        return jsonify({"code": 0})

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    return app


def build_relay() -> LarkRelay:
    """Wire the relay from configuration: stores, token budget, Lark and OpenAI clients."""
    lark_settings = get_lark_settings()
    openai_settings = get_openai_settings()
    relay_settings = get_relay_settings()

    sessions = SessionStore(ttl_seconds=relay_settings.session_ttl_seconds)
    context_builder = ContextBuilder(
        sessions,
        preamble=relay_settings.init_command,
        token_budget=openai_settings.token_budget,
        count_tokens=TokenCounter(openai_settings.text_model),
    )
    return LarkRelay(
        messenger=LarkClient.from_settings(lark_settings),
        generator=OpenAIGenerator(settings=openai_settings),
        sessions=sessions,
        events=EventDedupStore(ttl_seconds=relay_settings.event_ttl_seconds),
        context_builder=context_builder,
        settings=relay_settings,
        bot_name=lark_settings.app_name,
    )


def main() -> None:
    server = get_server_settings()
    logging.basicConfig(
        level=server.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    lark_settings = get_lark_settings()
    relay = build_relay()

    background = BackgroundLoop().start()
    app = create_app(
        relay,
        submit=background.submit,
        encrypt_key=lark_settings.encrypt_key,
        verification_token=lark_settings.verification_token,
    )
    logger.info("[%s] Now listening on port %s", lark_settings.app_name or "lark-relay", server.port)
    try:
        uvicorn.run(
            WSGIMiddleware(app),
            host=server.host,
            port=server.port,
            log_level=server.log_level,
        )
    finally:
        background.stop()


if __name__ == "__main__":
    main()
