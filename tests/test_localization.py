"""Tests for reply localization and language detection."""

from __future__ import annotations

import hashlib

import pytest

from secretary.services.cost import BudgetExceededError
from secretary.services.localization import (
    TRANSLATION_TTL_SECONDS,
    Localizer,
    translation_key,
)


class TestLocalize:
    @pytest.mark.asyncio
    async def test_canonical_language_is_passthrough(self, memory_store, gateway):
        localizer = Localizer(memory_store, gateway)
        assert await localizer.localize("Olá!", "pt") == "Olá!"
        assert await localizer.localize("Olá!", None) == "Olá!"
        assert gateway.calls == []
        assert await memory_store.count("i18n:") == 0

    @pytest.mark.asyncio
    async def test_translation_is_cached(self, memory_store, make_gateway):
        gateway = make_gateway({"translate": "Hello!"})
        localizer = Localizer(memory_store, gateway)

        assert await localizer.localize("Olá!", "en") == "Hello!"
        assert await localizer.localize("Olá!", "en") == "Hello!"

        assert gateway.operations().count("translate") == 1
        assert await memory_store.get(translation_key("Olá!", "en")) == "Hello!"

    @pytest.mark.asyncio
    async def test_failure_returns_canonical_text(self, memory_store, make_gateway):
        gateway = make_gateway({"translate": BudgetExceededError("hourly", "tokens")})
        localizer = Localizer(memory_store, gateway)
        assert await localizer.localize("Olá!", "en") == "Olá!"
        assert await memory_store.count("i18n:") == 0

    @pytest.mark.asyncio
    async def test_unavailable_llm_returns_canonical_text(self, memory_store, gateway):
        localizer = Localizer(memory_store, gateway)
        assert await localizer.localize("Olá!", "en") == "Olá!"


class TestTranslationKey:
    def test_key_format(self):
        digest = hashlib.sha256("enOlá!".encode()).hexdigest()
        assert translation_key("Olá!", "en") == f"i18n:en:{digest}"

    def test_thirty_day_ttl(self):
        assert TRANSLATION_TTL_SECONDS == 2_592_000


class TestDetectLanguage:
    @pytest.mark.asyncio
    async def test_detects_english(self, memory_store, make_gateway):
        localizer = Localizer(memory_store, make_gateway({"detect_language": " EN "}))
        assert await localizer.detect_language("Hello there") == "en"

    @pytest.mark.asyncio
    async def test_unsupported_answer_falls_back(self, memory_store, make_gateway):
        localizer = Localizer(memory_store, make_gateway({"detect_language": "fr"}))
        assert await localizer.detect_language("Bonjour") == "pt"

    @pytest.mark.asyncio
    async def test_failure_falls_back(self, memory_store, make_gateway):
        localizer = Localizer(memory_store, make_gateway({"detect_language": None}))
        assert await localizer.detect_language("Hello") == "pt"
