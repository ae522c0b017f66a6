"""Single gateway for every LLM call the secretary makes.

Classification, reply generation, translation and language detection all
go through :meth:`LLMGateway.complete`, which layers, per attempt:

  1. the global budget check (:class:`BudgetExceededError` is *not* retried),
  2. a per-call timeout,
  3. exponential-backoff retries,
  4. metrics and token accounting.

Voice notes are transcribed through the OpenAI Whisper REST endpoint in
:meth:`LLMGateway.transcribe`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from secretary.config import (
    ANTHROPIC_API_KEY,
    FAST_MODEL_NAME,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    TRANSCRIPTION_MODEL,
)
from secretary.services.cost import BudgetExceededError, CostGovernor
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

INITIAL_BACKOFF_SECONDS = 0.5
TRANSCRIPTION_TIMEOUT_SECONDS = 60.0

ChatFactory = Callable[[str, int, float], ChatAnthropic]


class LLMUnavailableError(Exception):
    """Raised when an LLM call fails after all retries (or cannot be made)."""


def _build_chat_model(model: str, max_tokens: int, temperature: float) -> ChatAnthropic:
    """Build an Anthropic chat model; retries are handled by the gateway."""
    return ChatAnthropic(
        model=model,
        api_key=ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


def _count_tokens(response, prompt: str, system: str | None) -> int:
    usage = getattr(response, "usage_metadata", None) or {}
    total = usage.get("total_tokens") if isinstance(usage, dict) else None
    if total:
        return int(total)
    # Rough estimate (~4 chars per token) when the provider omits usage
    text = f"{system or ''}{prompt}{getattr(response, 'content', '')}"
    return max(1, len(text) // 4)


def _response_text(response) -> str:
    content = getattr(response, "content", "")
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        ).strip()
    return str(content).strip()


class LLMGateway:
    """Budget-gated, retried, timed access to the chat and speech models."""

    def __init__(
        self,
        governor: CostGovernor | None = None,
        *,
        chat_factory: ChatFactory = _build_chat_model,
        timeout: float = LLM_TIMEOUT_SECONDS,
        max_retries: int = LLM_MAX_RETRIES,
        backoff: float = INITIAL_BACKOFF_SECONDS,
    ):
        self.governor = governor or CostGovernor()
        self._chat_factory = chat_factory
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff = backoff
        self._models: dict[tuple[str, int, float], ChatAnthropic] = {}

    def _model(self, model: str, max_tokens: int, temperature: float) -> ChatAnthropic:
        key = (model, max_tokens, temperature)
        if key not in self._models:
            self._models[key] = self._chat_factory(model, max_tokens, temperature)
        return self._models[key]

    async def complete(
        self,
        prompt: str,
        *,
        operation: str,
        system: str | None = None,
        model: str = FAST_MODEL_NAME,
        max_tokens: int = 512,
        temperature: float = 0.0,
    ) -> str:
        """Return the model's text reply for *prompt*.

        Raises :class:`BudgetExceededError` immediately when the budget is
        spent, or :class:`LLMUnavailableError` once retries are exhausted.
        """
        chat = self._model(model, max_tokens, temperature)
        messages = [HumanMessage(content=prompt)]
        if system:
            messages.insert(0, SystemMessage(content=system))

        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            self.governor.check_budget()
            t0 = time.perf_counter()
            try:
                response = await asyncio.wait_for(chat.ainvoke(messages), timeout=self._timeout)
            except BudgetExceededError:
                raise
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_failure(
                    "anthropic", operation,
                    error_type=type(exc).__name__, latency_ms=elapsed,
                )
                last_error = exc
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "LLM %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    operation, attempt, self._max_retries, type(exc).__name__, delay,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(delay)
                continue

            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("anthropic", operation, latency_ms=elapsed)
            tokens = _count_tokens(response, prompt, system)
            self.governor.record(tokens)
            logger.debug("LLM %s (%s) ok in %.0fms, %d tokens", operation, model, elapsed, tokens)
            return _response_text(response)

        raise LLMUnavailableError(
            f"LLM {operation} failed after {self._max_retries} attempts: {last_error}"
        )

    async def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        """Speech-to-text for a voice note via the Whisper API."""
        if not OPENAI_API_KEY:
            raise LLMUnavailableError("transcription is not configured (OPENAI_API_KEY)")

        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=OPENAI_BASE_URL,
                headers={"Authorization": f"Bearer {OPENAI_API_KEY}"},
                timeout=TRANSCRIPTION_TIMEOUT_SECONDS,
            ) as client:
                response = await client.post(
                    "/audio/transcriptions",
                    data={"model": TRANSCRIPTION_MODEL},
                    files={"file": (filename, audio, "audio/ogg")},
                )
                response.raise_for_status()
                text = response.json().get("text", "")
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "openai", "transcribe", error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise LLMUnavailableError(f"transcription failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("openai", "transcribe", latency_ms=elapsed)
        return text.strip()
