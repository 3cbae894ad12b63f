"""Lark / Feishu Open API helper utilities."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from app_config import LARK_DOMAINS, LarkSettings
from relay.errors import LarkAPIError, RelayError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
REPLY_PATH = "/open-apis/im/v1/messages/{message_id}/reply"
IMAGE_PATH = "/open-apis/im/v1/images"
# Refresh the tenant token this many seconds before Lark says it expires.
TOKEN_REFRESH_MARGIN = 60


def _check(response: httpx.Response) -> Dict[str, Any]:
    response.raise_for_status()
    body = response.json()
    code = body.get("code", 0)
    if code != 0:
        raise LarkAPIError(code, body.get("msg", ""))
    return body


class LarkClient:
    """Minimal async client for the parts of the IM API the relay needs."""

    def __init__(
        self,
        *,
        app_id: str,
        app_secret: str,
        domain: str = LARK_DOMAINS["feishu"],
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.app_id = app_id
        self.app_secret = app_secret
        self.domain = domain.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: LarkSettings, **kwargs: Any) -> "LarkClient":
        return cls(
            app_id=settings.app_id,
            app_secret=settings.app_secret,
            domain=settings.domain,
            **kwargs,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.domain, timeout=self.timeout, transport=self._transport)

    async def tenant_access_token(self) -> str:
        """Return a cached tenant access token, fetching a new one when it is about to expire."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        async with self._client() as client:
            resp = await client.post(
                TOKEN_PATH,
                json={"app_id": self.app_id, "app_secret": self.app_secret},
            )
        body = _check(resp)
        token = body.get("tenant_access_token")
        if not token:
            raise RelayError("Lark did not return a tenant access token.")
        expire = int(body.get("expire", 0))
        self._token = token
        self._token_expires_at = self._clock() + max(expire - TOKEN_REFRESH_MARGIN, 0)
        return token

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self.tenant_access_token()}"}

    async def _reply(self, message_id: str, msg_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        headers = await self._auth_headers()
        async with self._client() as client:
            resp = await client.post(
                REPLY_PATH.format(message_id=message_id),
                headers=headers,
                json={"content": json.dumps(content, ensure_ascii=False), "msg_type": msg_type},
            )
        return _check(resp).get("data") or {}

    async def reply(self, message_id: str, text: str) -> Dict[str, Any]:
        """Reply to ``message_id`` with a plain text message."""
        return await self._reply(message_id, "text", {"text": text})

    async def reply_image(self, message_id: str, image_key: str) -> Dict[str, Any]:
        """Reply to ``message_id`` with a previously uploaded image."""
        return await self._reply(message_id, "image", {"image_key": image_key})

    async def upload_image(self, image: bytes) -> str:
        """Upload image bytes for use in messages and return the ``image_key``."""
        headers = await self._auth_headers()
        async with self._client() as client:
            resp = await client.post(
                IMAGE_PATH,
                headers=headers,
                data={"image_type": "message"},
                files={"image": ("image.png", image, "application/octet-stream")},
            )
        image_key = (_check(resp).get("data") or {}).get("image_key")
        if not image_key:
            raise RelayError("Failed to upload image to Lark.")
        logger.debug("Uploaded image %s (%d bytes)", image_key, len(image))
        return image_key
