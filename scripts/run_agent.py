"""CLI entrypoint for chatting with the relay without a Lark app."""

from __future__ import annotations

import argparse
import asyncio
import itertools
import os
import time
from datetime import datetime

from app_config import get_openai_settings, get_relay_settings
from chat import ContextBuilder, EventDedupStore, SessionStore, TokenCounter, normalize_text
from generation import OpenAIGenerator
from relay import LarkRelay
from relay.events import TextMessage


class ConsoleMessenger:
    """Prints replies instead of sending them; images are written to ``media_dir``."""

    def __init__(self, media_dir: str) -> None:
        self.media_dir = media_dir

    async def reply(self, message_id: str, text: str) -> None:
        print(text or "[no text response]")

    async def reply_image(self, message_id: str, image_key: str) -> None:
        print(f"[image] {image_key}")

    async def upload_image(self, image: bytes) -> str:
        os.makedirs(self.media_dir, exist_ok=True)
        path = os.path.join(self.media_dir, f"img-{datetime.now().strftime('%Y%m%d-%H%M%S')}.png")
        with open(path, "wb") as fh:
            fh.write(image)
        return path


async def run_chat(*, user_id: str, media_dir: str) -> None:
    openai_settings = get_openai_settings()
    relay_settings = get_relay_settings()
    sessions = SessionStore(ttl_seconds=relay_settings.session_ttl_seconds)
    relay = LarkRelay(
        messenger=ConsoleMessenger(media_dir),
        generator=OpenAIGenerator(settings=openai_settings),
        sessions=sessions,
        events=EventDedupStore(ttl_seconds=relay_settings.event_ttl_seconds),
        context_builder=ContextBuilder(
            sessions,
            preamble=relay_settings.init_command,
            token_budget=openai_settings.token_budget,
            count_tokens=TokenCounter(openai_settings.text_model),
        ),
        settings=relay_settings,
    )

    print("Type your message (/help for commands, Ctrl+C to exit):")
    for counter in itertools.count(1):
        try:
            text = input("> ")
        except (KeyboardInterrupt, EOFError):
            print("\nbye!")
            return

        await relay.dispatch(
            TextMessage(
                message_id=f"cli-{counter}",
                user_id=user_id,
                chat_type="p2p",
                create_time=int(time.time() * 1000),
                text=normalize_text(text),
            )
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Minimal chat CLI for the Lark relay.")
    parser.add_argument("--user", default="cli", help="User ID whose session is used.")
    parser.add_argument("--media-dir", default="media", help="Where generated images are saved.")
    args = parser.parse_args()

    asyncio.run(run_chat(user_id=args.user, media_dir=args.media_dir))


if __name__ == "__main__":
    main()
