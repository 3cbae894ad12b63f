"""OpenAI text and image generation for the relay."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

import httpx

from app_config import OpenAISettings, get_async_openai_client, get_openai_settings
from relay.errors import RelayError

if TYPE_CHECKING:
    from openai import AsyncOpenAI
else:  # pragma: no cover
    AsyncOpenAI = Any  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class OpenAIGenerator:
    """Wraps an ``AsyncOpenAI`` client with the relay's sampling parameters."""

    def __init__(
        self,
        *,
        settings: Optional[OpenAISettings] = None,
        client: Optional[AsyncOpenAI] = None,
        download_transport: Optional[httpx.AsyncBaseTransport] = None,
        download_timeout: float = 60,
    ) -> None:
        self.settings = settings or get_openai_settings()
        self.client = client or get_async_openai_client()
        self._download_transport = download_transport
        self._download_timeout = download_timeout

    async def complete(self, messages: Sequence[Dict[str, Any]]) -> str:
        """Single chat completion round-trip; returns the stripped answer text."""
        settings = self.settings
        response = await self.client.chat.completions.create(
            model=settings.text_model,
            messages=list(messages),
            max_tokens=settings.max_generate_token_length,
            temperature=settings.temperature,
            top_p=settings.top_p,
            frequency_penalty=settings.frequency_penalty,
            presence_penalty=settings.presence_penalty,
        )
        answer = (response.choices[0].message.content or "").strip()
        if not answer:
            raise RelayError("The model returned an empty answer.")
        return answer

    async def generate_image(self, prompt: str) -> bytes:
        """Create an image for ``prompt`` and return the downloaded bytes."""
        result = await self.client.images.generate(prompt=prompt, size=self.settings.image_size, n=1)
        url = result.data[0].url if result.data else None
        if not url:
            raise RelayError("Failed to create image.")
        return await self.download(url)

    async def download(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self._download_timeout,
            transport=self._download_transport,
            follow_redirects=True,
        ) as client:
            resp = await client.get(url)
        if resp.status_code != 200:
            logger.warning("Image download returned HTTP %s", resp.status_code)
            raise RelayError("Failed to download image.")
        return resp.content
