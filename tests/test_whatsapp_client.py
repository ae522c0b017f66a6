"""Tests for the WhatsApp Cloud API transport."""

from __future__ import annotations

import json

import httpx
import pytest

from secretary.services.whatsapp_client import TransportError, WhatsAppClient, split_reply

BASE_URL = "https://graph.test/v19.0"


def _client(handler, delays: list[float] | None = None) -> WhatsAppClient:
    async def _sleep(seconds: float) -> None:
        if delays is not None:
            delays.append(seconds)

    return WhatsAppClient(
        token="wa-token",
        phone_id="phone-1",
        base_url=BASE_URL,
        sleep=_sleep,
        transport=httpx.MockTransport(handler),
    )


class TestSplitReply:
    def test_splits_on_blank_lines(self):
        assert split_reply("Um.\n\nDois.\n\n\n\nTrês.") == ["Um.", "Dois.", "Três."]

    def test_single_line_breaks_stay_together(self):
        assert split_reply("Linha 1\nLinha 2") == ["Linha 1\nLinha 2"]

    def test_blank_text(self):
        assert split_reply("   ") == []


class TestSend:
    @pytest.mark.asyncio
    async def test_send_text_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

        client = _client(handler)
        assert await client.send_text("5511999990000", "Olá!") is True

        [request] = seen
        assert request.url.path == "/v19.0/phone-1/messages"
        assert request.headers["Authorization"] == "Bearer wa-token"
        assert json.loads(request.content) == {
            "messaging_product": "whatsapp",
            "to": "5511999990000",
            "type": "text",
            "text": {"body": "Olá!"},
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))
        assert await client.send_text("5511", "Olá") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        assert await client.send_text("5511", "Olá") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_reply_is_sent_in_parts_with_pauses(self):
        bodies: list[str] = []
        delays: list[float] = []

        def handler(request):
            bodies.append(json.loads(request.content)["text"]["body"])
            return httpx.Response(200, json={})

        client = _client(handler, delays)
        assert await client.send_reply("5511", "Primeiro.\n\nSegundo.\n\nTerceiro.") is True

        assert bodies == ["Primeiro.", "Segundo.", "Terceiro."]
        assert len(delays) == 2
        assert all(1.2 <= d <= 2.0 for d in delays)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_reply_keeps_sending_after_a_failed_part(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(500 if calls["n"] == 1 else 200, json={})

        client = _client(handler)
        assert await client.send_reply("5511", "Um.\n\nDois.") is False
        assert calls["n"] == 2
        await client.aclose()


class TestFetchMedia:
    @pytest.mark.asyncio
    async def test_downloads_media(self):
        def handler(request):
            if request.url.path == "/v19.0/media-1":
                return httpx.Response(200, json={"url": "https://cdn.test/audio/abc"})
            assert request.url.host == "cdn.test"
            return httpx.Response(200, content=b"OggS-bytes")

        client = _client(handler)
        assert await client.fetch_media("media-1") == b"OggS-bytes"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_url_raises(self):
        client = _client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(TransportError):
            await client.fetch_media("media-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client = _client(lambda request: httpx.Response(404, json={}))
        with pytest.raises(TransportError):
            await client.fetch_media("media-1")
        await client.aclose()
