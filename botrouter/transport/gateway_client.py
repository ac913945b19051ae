# botrouter/transport/gateway_client.py
"""
Outbound sender for the messaging gateway.

The gateway is a separate process that owns the chat connection and
exposes ``POST {gateway_url}/send`` with ``{"conversation_id", "text"}``.

Failures never raise: they are logged, counted and reported as ``False``
so a bad send never aborts message processing.
"""
from __future__ import annotations

import asyncio

import aiohttp

from botrouter.infra.http_client import get_gateway_session
from botrouter.infra.logging_config import get_logger, mask_id
from botrouter.infra.metrics import inc_counter

logger = get_logger(__name__)


class GatewayClient:
    def __init__(self, base_url: str, token: str | None = None, timeout_seconds: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(self, conversation_id: str, text: str) -> bool:
        url = f"{self.base_url}/send"
        payload = {"conversation_id": conversation_id, "text": text}
        session = get_gateway_session(self.timeout_seconds)
        try:
            async with session.post(url, json=payload, headers=self._headers()) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    logger.error(
                        f"Gateway send failed: status={resp.status}, "
                        f"conversation={mask_id(conversation_id)}, body={body[:200]}"
                    )
                    inc_counter("gateway_send_errors", status=resp.status)
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"Gateway unreachable: {exc.__class__.__name__}: {exc}")
            inc_counter("gateway_send_errors", status=0)
            return False

        inc_counter("gateway_messages_sent")
        return True

