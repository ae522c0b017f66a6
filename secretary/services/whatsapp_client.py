"""WhatsApp Cloud API transport: send replies, download voice notes.

Sending never raises: a failed send is logged and reported as ``False`` so
that a transport outage cannot break the turn that already ran.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

import httpx

from secretary.config import WHATSAPP_BASE_URL, WHATSAPP_PHONE_ID, WHATSAPP_TOKEN
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0
# Randomized pause between the parts of one reply (seconds)
PART_DELAY_RANGE = (1.2, 2.0)


class TransportError(Exception):
    """Raised when media cannot be fetched from the messaging platform."""


def split_reply(text: str) -> list[str]:
    """Split a reply into the separate chat bubbles it is sent as."""
    return [part.strip() for part in text.split("\n\n") if part.strip()]


class WhatsAppClient:
    def __init__(
        self,
        token: str | None = None,
        phone_id: str | None = None,
        base_url: str | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._phone_id = phone_id or WHATSAPP_PHONE_ID
        self._client = httpx.AsyncClient(
            base_url=base_url or WHATSAPP_BASE_URL,
            headers={"Authorization": f"Bearer {token or WHATSAPP_TOKEN}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._sleep = sleep

    async def send_text(self, to: str, text: str) -> bool:
        """Send one text message.  Returns ``False`` on any failure."""
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        t0 = time.perf_counter()
        try:
            response = await self._client.post(f"/{self._phone_id}/messages", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "whatsapp", "send_text", error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.error("WhatsApp send to %s failed: %s", to, exc)
            return False

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("whatsapp", "send_text", latency_ms=elapsed)
        return True

    async def send_reply(self, to: str, text: str) -> bool:
        """Send *text* as one bubble per paragraph, pausing between bubbles."""
        parts = split_reply(text)
        delivered = True
        for index, part in enumerate(parts):
            if index:
                await self._sleep(random.uniform(*PART_DELAY_RANGE))
            delivered = await self.send_text(to, part) and delivered
        return delivered

    async def fetch_media(self, media_id: str) -> bytes:
        """Resolve *media_id* to its short-lived URL and download the bytes."""
        t0 = time.perf_counter()
        try:
            meta = await self._client.get(f"/{media_id}")
            meta.raise_for_status()
            url = meta.json().get("url")
            if not url:
                raise TransportError(f"media {media_id} has no download URL")
            media = await self._client.get(url)
            media.raise_for_status()
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "whatsapp", "fetch_media", error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise TransportError(f"could not fetch media {media_id}: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("whatsapp", "fetch_media", latency_ms=elapsed)
        return media.content

    async def aclose(self) -> None:
        await self._client.aclose()
