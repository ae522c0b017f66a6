"""Inbound pipeline: webhook message → rate limit → dialogue → transport.

``InboundProcessor`` owns every long-lived collaborator (store, gateway,
transport, calendar, tenants) and the periodic maintenance task.  The HTTP
layer holds exactly one instance, created in the FastAPI lifespan.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from secretary import responses
from secretary.dialogue import DialogueController
from secretary.services.calendar_client import GoogleCalendarClient
from secretary.services.cost import CostGovernor
from secretary.services.llm import LLMGateway, LLMUnavailableError
from secretary.services.localization import Localizer
from secretary.services.rate_limiter import RateLimiter
from secretary.services.sessions import SessionStore
from secretary.services.store import FailoverStore, StoreUnavailableError, create_store
from secretary.services.tenants import build_tenant_directory
from secretary.services.whatsapp_client import TransportError, WhatsAppClient

logger = logging.getLogger(__name__)

RESET_COMMANDS = frozenset({"/novaconversa", "/reset"})
MAINTENANCE_INTERVAL_SECONDS = 5 * 60


class RateLimitedError(Exception):
    """Raised by :meth:`InboundProcessor.converse` when the identity is throttled."""


@dataclass(frozen=True)
class InboundMessage:
    identity: str
    kind: str
    text: str | None = None
    media_id: str | None = None
    bot_instance_id: str | None = None


def parse_webhook_payload(payload: dict[str, Any]) -> list[InboundMessage]:
    """Extract the user messages from a WhatsApp Cloud API webhook body.

    Status callbacks (delivered/read) carry no ``messages`` and yield nothing.
    """
    messages: list[InboundMessage] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            bot_instance_id = (value.get("metadata") or {}).get("phone_number_id")
            for message in value.get("messages") or []:
                identity = message.get("from")
                if not identity:
                    continue
                kind = message.get("type", "unknown")
                messages.append(
                    InboundMessage(
                        identity=identity,
                        kind=kind,
                        text=(message.get("text") or {}).get("body"),
                        media_id=(message.get("audio") or {}).get("id"),
                        bot_instance_id=bot_instance_id,
                    )
                )
    return messages


def is_reset_command(text: str | None) -> bool:
    return bool(text) and text.strip().lower() in RESET_COMMANDS


class AutomationSwitch:
    """Per-identity on/off flag for automated replies (on by default)."""

    def __init__(self, store: FailoverStore):
        self._store = store

    @staticmethod
    def _key(identity: str) -> str:
        return f"automation:{identity}"

    async def is_active(self, identity: str) -> bool:
        return await self._store.get(self._key(identity)) != "off"

    async def set_active(self, identity: str, active: bool) -> None:
        if active:
            await self._store.delete(self._key(identity))
        else:
            await self._store.set(self._key(identity), "off")
        logger.info("Automation for %s set to %s", identity, "on" if active else "off")


class InboundProcessor:
    def __init__(
        self,
        sessions: SessionStore,
        limiter: RateLimiter,
        controller: DialogueController,
        transport: WhatsAppClient,
        automation: AutomationSwitch,
        *,
        maintenance_interval: float = MAINTENANCE_INTERVAL_SECONDS,
    ):
        self.sessions = sessions
        self.limiter = limiter
        self.controller = controller
        self.transport = transport
        self.automation = automation
        self._maintenance_interval = maintenance_interval
        self._maintenance_task: asyncio.Task | None = None

    @property
    def governor(self) -> CostGovernor:
        return self.controller.gateway.governor

    # ── Webhook path ─────────────────────────────────────────────────

    async def handle_webhook_message(self, message: InboundMessage) -> None:
        """Process one delivery to completion; never raises."""
        try:
            reply = await self._reply_for(message)
        except StoreUnavailableError:
            logger.critical("Session store unavailable while serving %s", message.identity)
            reply = responses.technical_apology()
        except Exception:
            logger.exception("Unhandled error processing message from %s", message.identity)
            reply = responses.technical_apology()

        if reply:
            await self.transport.send_reply(message.identity, reply)

    async def _reply_for(self, message: InboundMessage) -> str | None:
        identity = message.identity

        if is_reset_command(message.text):
            logger.info("Conversation reset requested by %s", identity)
            return await self.controller.restart(identity, bot_instance_id=message.bot_instance_id)

        if not await self.automation.is_active(identity):
            logger.info("Automation paused for %s, not replying", identity)
            return None

        session = await self.sessions.get(identity)
        if await self.limiter.is_rate_limited(identity, len(session.conversation_history)):
            return None

        if message.kind == "text" and message.text:
            text = message.text
        elif message.kind == "audio" and message.media_id:
            text = await self._transcribe(message.media_id)
            if not text:
                return responses.audio_unreadable()
        else:
            logger.info("Unsupported %s message from %s", message.kind, identity)
            return responses.unsupported_message()

        return await self.controller.process_message(
            identity, text, session=session, bot_instance_id=message.bot_instance_id,
        )

    async def _transcribe(self, media_id: str) -> str | None:
        try:
            audio = await self.transport.fetch_media(media_id)
            return await self.controller.gateway.transcribe(audio)
        except (TransportError, LLMUnavailableError) as exc:
            logger.warning("Could not transcribe audio %s: %s", media_id, exc)
            return None

    # ── Synchronous paths (HTTP API) ─────────────────────────────────

    async def converse(
        self, identity: str, text: str, *, bot_instance_id: str | None = None,
    ) -> str:
        """Run one turn and return the reply instead of sending it.

        Raises :class:`RateLimitedError` or :class:`StoreUnavailableError`.
        """
        if is_reset_command(text):
            return await self.controller.restart(identity, bot_instance_id=bot_instance_id)

        session = await self.sessions.get(identity)
        if await self.limiter.is_rate_limited(identity, len(session.conversation_history)):
            raise RateLimitedError(identity)
        return await self.controller.process_message(
            identity, text, session=session, bot_instance_id=bot_instance_id,
        )

    async def send_manual(self, identity: str, text: str) -> bool:
        """Operator message: send it and pause automated replies."""
        await self.automation.set_active(identity, False)
        return await self.transport.send_reply(identity, text)

    async def stats(self) -> dict:
        return {
            "sessions": await self.sessions.stats(),
            "budget": self.governor.stats(),
        }

    # ── Lifecycle ────────────────────────────────────────────────────

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._maintenance_interval)
            try:
                self.sessions.sweep_idle()
                await self.sessions.store.try_reconnect()
            except Exception:
                logger.exception("Session maintenance failed")

    async def start(self) -> None:
        self.governor.start()
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(
                self._maintenance_loop(), name="session-maintenance",
            )

    async def aclose(self) -> None:
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None
        await self.governor.stop()

        for client in (self.transport, self.controller.calendar, self.controller.tenants):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        await self.sessions.close()


def create_inbound_processor() -> InboundProcessor:
    """Wire the production collaborators from configuration."""
    store = create_store()
    sessions = SessionStore(store)
    gateway = LLMGateway(CostGovernor())
    controller = DialogueController(
        sessions,
        gateway,
        Localizer(store, gateway),
        build_tenant_directory(),
        GoogleCalendarClient(),
    )
    return InboundProcessor(
        sessions,
        RateLimiter(sessions),
        controller,
        WhatsAppClient(),
        AutomationSwitch(store),
    )
