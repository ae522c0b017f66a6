"""On-demand translation of canonical (Portuguese) replies, memoized in the store."""

from __future__ import annotations

import hashlib
import logging

from secretary.config import CANONICAL_LANGUAGE
from secretary.prompts import DETECT_LANGUAGE_PROMPT, get_translate_system_prompt
from secretary.services.cost import BudgetExceededError
from secretary.services.llm import LLMGateway, LLMUnavailableError
from secretary.services.store import FailoverStore

logger = logging.getLogger(__name__)

TRANSLATION_TTL_SECONDS = 30 * 24 * 60 * 60
SUPPORTED_LANGUAGES = ("pt", "en")


def translation_key(text: str, target: str) -> str:
    digest = hashlib.sha256(f"{target}{text}".encode()).hexdigest()
    return f"i18n:{target}:{digest}"


class Localizer:
    def __init__(self, store: FailoverStore, gateway: LLMGateway):
        self._store = store
        self._gateway = gateway

    async def localize(self, text: str, target: str | None) -> str:
        """Return *text* in *target*; the canonical text on any failure."""
        if not text or not target or target == CANONICAL_LANGUAGE:
            return text

        key = translation_key(text, target)
        cached = await self._store.get(key)
        if cached:
            return cached

        try:
            translated = await self._gateway.complete(
                text,
                operation="translate",
                system=get_translate_system_prompt(target),
                max_tokens=2048,
            )
        except (LLMUnavailableError, BudgetExceededError) as exc:
            logger.warning("Translation to %s failed, sending canonical text: %s", target, exc)
            return text

        if not translated:
            return text
        await self._store.set(key, translated, TRANSLATION_TTL_SECONDS)
        return translated

    async def detect_language(self, text: str) -> str:
        """``"pt"`` or ``"en"``; falls back to the canonical language."""
        try:
            answer = await self._gateway.complete(
                DETECT_LANGUAGE_PROMPT.format(text=text),
                operation="detect_language",
                max_tokens=5,
            )
        except (LLMUnavailableError, BudgetExceededError) as exc:
            logger.info("Language detection unavailable, assuming %s: %s", CANONICAL_LANGUAGE, exc)
            return CANONICAL_LANGUAGE

        answer = answer.strip().strip('"').lower()
        return answer if answer in SUPPORTED_LANGUAGES else CANONICAL_LANGUAGE
