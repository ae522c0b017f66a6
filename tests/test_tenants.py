"""Tests for clinic (tenant) resolution."""

from __future__ import annotations

import httpx
import pytest

from secretary.models import TenantConfig
from secretary.services.tenants import (
    StaticTenantDirectory,
    SupabaseTenantDirectory,
    TenantNotFoundError,
    load_knowledge_base,
)


class TestStaticDirectory:
    @pytest.mark.asyncio
    async def test_known_and_default(self):
        clinic = TenantConfig(name="Dra. Lima", calendar_id="cal-lima")
        fallback = TenantConfig(name="Dr. Quelson")
        directory = StaticTenantDirectory({"phone-1": clinic}, default=fallback)

        assert await directory.resolve("phone-1") == clinic
        assert await directory.resolve("phone-2") == fallback
        assert await directory.resolve(None) == fallback

    @pytest.mark.asyncio
    async def test_unknown_without_default_raises(self):
        with pytest.raises(TenantNotFoundError):
            await StaticTenantDirectory().resolve("phone-1")


class TestSupabaseDirectory:
    @pytest.mark.asyncio
    async def test_resolves_clinic_row(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{
                "doctor_name": "Dra. Souza",
                "knowledge_base": {"price": "R$ 500"},
                "google_calendar_id": "cal-souza",
            }])

        directory = SupabaseTenantDirectory(
            "https://project.supabase.test", "sb-key", transport=httpx.MockTransport(handler),
        )
        tenant = await directory.resolve("phone-9")

        assert tenant == TenantConfig(
            name="Dra. Souza", knowledge_base={"price": "R$ 500"}, calendar_id="cal-souza",
        )
        [request] = seen
        assert request.url.path == "/rest/v1/clinics"
        assert request.url.params["whatsapp_phone_id"] == "eq.phone-9"
        assert request.url.params["limit"] == "1"
        assert request.headers["apikey"] == "sb-key"
        await directory.aclose()

    @pytest.mark.asyncio
    async def test_no_rows_raises(self):
        directory = SupabaseTenantDirectory(
            "https://project.supabase.test", "sb-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
        )
        with pytest.raises(TenantNotFoundError):
            await directory.resolve("phone-9")
        await directory.aclose()

    @pytest.mark.asyncio
    async def test_http_error_raises_not_found(self):
        directory = SupabaseTenantDirectory(
            "https://project.supabase.test", "sb-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(TenantNotFoundError):
            await directory.resolve("phone-9")
        await directory.aclose()

    @pytest.mark.asyncio
    async def test_missing_bot_id_raises(self):
        directory = SupabaseTenantDirectory("https://project.supabase.test", "sb-key")
        with pytest.raises(TenantNotFoundError):
            await directory.resolve(None)
        await directory.aclose()


class TestKnowledgeBase:
    def test_reads_file(self, tmp_path):
        path = tmp_path / "kb.md"
        path.write_text("# Consultório", encoding="utf-8")
        assert load_knowledge_base(path) == "# Consultório"

    def test_missing_file(self, tmp_path):
        assert load_knowledge_base(tmp_path / "missing.md") is None
