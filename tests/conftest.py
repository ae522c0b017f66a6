"""Shared test fixtures for the NEPQ secretary test suite."""

from __future__ import annotations

import os
from typing import Any

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("WHATSAPP_TOKEN", "test-whatsapp-token-456")
    os.environ.setdefault("WHATSAPP_PHONE_ID", "phone-id-789")
    os.environ.setdefault("VERIFY_TOKEN", "test-verify-token")
    os.environ.setdefault("CONTACT_PHONE", "(11) 4000-0000")
    os.environ["METRICS_ENABLED"] = "false"


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClock:
    """Controllable ``time.time`` replacement."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Stands in for ``LLMGateway``.

    ``replies`` maps an operation to a string, a callable taking the prompt,
    an exception to raise, or a list consumed one item per call.  Operations
    without a reply raise ``LLMUnavailableError`` so the deterministic
    fallbacks run.
    """

    def __init__(self, replies: dict[str, Any] | None = None):
        from secretary.services.cost import CostGovernor

        self.governor = CostGovernor()
        self.replies: dict[str, Any] = {"detect_language": "pt"}
        self.replies.update(replies or {})
        self.calls: list[tuple[str, str]] = []

    async def complete(self, prompt: str, *, operation: str, **kwargs) -> str:
        from secretary.services.llm import LLMUnavailableError

        self.calls.append((operation, prompt))
        reply = self.replies.get(operation)
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else None
        if reply is None:
            raise LLMUnavailableError(f"no fake reply for {operation}")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    async def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        self.calls.append(("transcribe", filename))
        reply = self.replies.get("transcribe", "")
        if isinstance(reply, Exception):
            raise reply
        return reply

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]


class FakeTransport:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.media: bytes | Exception = b"OggS-fake-audio"
        self.closed = False

    async def send_text(self, to: str, text: str) -> bool:
        self.sent.append((to, text))
        return True

    async def send_reply(self, to: str, text: str) -> bool:
        return await self.send_text(to, text)

    async def fetch_media(self, media_id: str) -> bytes:
        if isinstance(self.media, Exception):
            raise self.media
        return self.media

    async def aclose(self) -> None:
        self.closed = True


class FakeCalendar:
    def __init__(self):
        self.events: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def create_event(self, calendar_id: str, **event) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.events.append({"calendar_id": calendar_id, **event})
        return {"id": f"evt-{len(self.events)}", "htmlLink": "https://calendar.example/evt"}


def make_flaky_backend():
    """A memory backend posing as Redis that can be switched to fail."""
    from secretary.services.cache import MemoryBackend

    class FlakyBackend(MemoryBackend):
        name = "redis"

        def __init__(self):
            super().__init__()
            self.fail = False
            self.calls = 0

        def _maybe_fail(self) -> None:
            self.calls += 1
            if self.fail:
                raise ConnectionError("redis is down")

        async def get(self, key):
            self._maybe_fail()
            return await super().get(key)

        async def set(self, key, value, ttl=None):
            self._maybe_fail()
            await super().set(key, value, ttl)

        async def delete(self, key):
            self._maybe_fail()
            return await super().delete(key)

        async def count(self, prefix):
            self._maybe_fail()
            return await super().count(prefix)

        async def ping(self):
            self._maybe_fail()
            return True

    return FlakyBackend()


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    """A permanently degraded store: everything lives in memory."""
    from secretary.services.store import FailoverStore

    return FailoverStore(None)


@pytest.fixture
def sessions(memory_store):
    from secretary.services.sessions import SessionStore

    return SessionStore(memory_store)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def tenant():
    from secretary.models import TenantConfig

    return TenantConfig(name="Dr. Teste", knowledge_base="Consulta: R$ 400", calendar_id="cal-1")


@pytest.fixture
def tenants(tenant):
    from secretary.services.tenants import StaticTenantDirectory

    return StaticTenantDirectory(default=tenant)


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def controller(sessions, gateway, tenants, calendar, memory_store):
    from secretary.dialogue import DialogueController
    from secretary.services.localization import Localizer

    return DialogueController(
        sessions, gateway, Localizer(memory_store, gateway), tenants, calendar,
    )


@pytest.fixture
def processor(sessions, controller, transport, memory_store, clock):
    from secretary.inbound import AutomationSwitch, InboundProcessor
    from secretary.services.rate_limiter import RateLimiter

    return InboundProcessor(
        sessions,
        RateLimiter(sessions, clock=clock),
        controller,
        transport,
        AutomationSwitch(memory_store),
    )


@pytest.fixture
def flaky_backend():
    return make_flaky_backend()


@pytest.fixture
def make_gateway():
    """Factory for a ``FakeGateway`` with scripted replies."""
    return FakeGateway
