"""LangGraph-based dialogue controller for the NEPQ secretary.

Architecture:
  Every inbound message runs once through a small LangGraph StateGraph:

    1. **screen**       — over-length guard, then intent classification
                          (emergency keywords → cheap LLM classifier →
                          deterministic keyword fallback)
    2. one handler node, chosen by ``route_turn`` in priority order:

         emergency → loop_guard → name_capture → interrupt → objection
                   → discovery | closing | scheduling | complete

  Routing:
    screen → (rejected?)  → END
    screen → (handler)    → END

  The session is loaded before the graph runs and saved after it returns;
  nodes only mutate the working copy carried in the graph state.

  Replies are produced in the canonical language (Portuguese) and
  translated by the localizer on the way out.
"""

from __future__ import annotations

import logging

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from secretary import responses
from secretary.compactor import compact, recent_context
from secretary.config import MAX_MESSAGE_CHARS, MODEL_NAME
from secretary.intent import (
    extract_first_name,
    is_emergency,
    keyword_intent,
    match_objection,
    parse_intent,
)
from secretary.models import DISCOVERY_STAGES, STAGE_SLOTS, Intent, Session, Stage, TenantConfig, Turn
from secretary.prompts import get_classify_prompt, get_closing_prompt, get_system_prompt
from secretary.scheduling import resolve_preference
from secretary.services.calendar_client import CalendarAPIError, GoogleCalendarClient
from secretary.services.cost import BudgetExceededError
from secretary.services.llm import LLMGateway, LLMUnavailableError
from secretary.services.localization import Localizer
from secretary.services.sessions import SessionStore
from secretary.services.tenants import TenantDirectory, TenantNotFoundError

logger = logging.getLogger(__name__)
# Messages nobody could classify, kept for reviewing the scripts later
unresolved_logger = logging.getLogger("secretary.unresolved")

LOOP_THRESHOLD = 5
CLOSING_PARAGRAPHS = 6


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict):
    """The state that flows through the graph for one inbound message.

    ``rejected`` marks input refused before classification; ``reseeded``
    marks a turn that replaced the history itself.  Neither kind of turn is
    appended to the history afterwards.
    """

    session: Session
    tenant: TenantConfig
    text: str
    intent: Intent | None
    reply: str
    rejected: bool
    reseeded: bool


# ── Conditional edge ─────────────────────────────────────────────────


def route_turn(state: TurnState) -> str:
    """Pick the one handler node for this turn."""
    if state["rejected"]:
        return END

    session = state["session"]
    intent = state["intent"]
    if session.stage == Stage.EMERGENCY or intent == Intent.EMERGENCY:
        return "emergency"
    if session.repeat_count >= LOOP_THRESHOLD:
        return "loop_guard"
    if not session.first_name:
        return "name_capture"
    if intent in (Intent.PRICE, Intent.INSURANCE) and session.stage in DISCOVERY_STAGES:
        return "interrupt"
    if session.stage in (Stage.CLOSING, Stage.SCHEDULING, Stage.COMPLETE) and match_objection(
        state["text"]
    ):
        return "objection"
    if session.stage == Stage.CLOSING:
        return "closing"
    if session.stage == Stage.SCHEDULING:
        return "scheduling"
    if session.stage == Stage.COMPLETE:
        return "complete"
    return "discovery"


HANDLER_NODES = (
    "emergency",
    "loop_guard",
    "name_capture",
    "interrupt",
    "objection",
    "discovery",
    "closing",
    "scheduling",
    "complete",
)


class DialogueController:
    """Runs one turn of the conversation for one identity."""

    def __init__(
        self,
        sessions: SessionStore,
        gateway: LLMGateway,
        localizer: Localizer,
        tenants: TenantDirectory,
        calendar: GoogleCalendarClient | None = None,
    ):
        self.sessions = sessions
        self.gateway = gateway
        self.localizer = localizer
        self.tenants = tenants
        self.calendar = calendar
        self._graph = self._build_graph()

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("screen", self.screen)
        for name in HANDLER_NODES:
            graph.add_node(name, getattr(self, f"_handle_{name}"))
            graph.add_edge(name, END)

        graph.set_entry_point("screen")
        graph.add_conditional_edges(
            "screen",
            route_turn,
            {**{name: name for name in HANDLER_NODES}, END: END},
        )
        return graph.compile()

    # ── Entry point ──────────────────────────────────────────────────

    async def process_message(
        self,
        identity: str,
        text: str,
        *,
        session: Session | None = None,
        bot_instance_id: str | None = None,
    ) -> str:
        """Advance the conversation by one message and return the reply.

        *session* may be passed when the caller already loaded it.  The
        session is saved before returning, except when the clinic cannot be
        resolved (the user gets an apology and nothing changes).
        """
        if session is None:
            session = await self.sessions.get(identity)

        try:
            tenant = session.tenant_config or await self.tenants.resolve(bot_instance_id)
        except TenantNotFoundError as exc:
            logger.error("No clinic for %s (bot %s): %s", identity, bot_instance_id, exc)
            return responses.technical_apology(session.first_name)
        session.tenant_config = tenant

        # Over-long input is rejected by the screen node; it never reaches the LLM.
        if session.language is None and len(text) <= MAX_MESSAGE_CHARS:
            session.language = await self.localizer.detect_language(text)

        result = await self._graph.ainvoke(
            {
                "session": session,
                "tenant": tenant,
                "text": text,
                "intent": None,
                "reply": "",
                "rejected": False,
                "reseeded": False,
            }
        )
        session = result["session"]
        reply = result["reply"]

        if not result["rejected"] and not result["reseeded"]:
            session.conversation_history.append(Turn(role="user", content=text))
            session.conversation_history.append(Turn(role="assistant", content=reply))
            session.conversation_history = compact(session.conversation_history)

        localized = await self.localizer.localize(reply, session.language)
        await self.sessions.save(identity, session)
        logger.debug(
            "Turn for %s: intent=%s stage=%s", identity, result["intent"], session.stage.value,
        )
        return localized

    async def restart(self, identity: str, *, bot_instance_id: str | None = None) -> str:
        """Reset the session and open a new conversation by asking the name."""
        session = await self.sessions.reset_session(identity)
        try:
            tenant = await self.tenants.resolve(bot_instance_id)
        except TenantNotFoundError as exc:
            logger.error("No clinic for %s (bot %s): %s", identity, bot_instance_id, exc)
            return responses.technical_apology()

        session.tenant_config = tenant
        session.stage = Stage.AWAITING_NAME
        reply = responses.ask_name(tenant.name)
        await self.sessions.save(identity, session)
        return reply

    # ── Node: screen ─────────────────────────────────────────────────

    async def screen(self, state: TurnState) -> dict:
        """Reject over-long input, then classify the message."""
        session = state["session"]
        text = state["text"]

        if len(text) > MAX_MESSAGE_CHARS:
            logger.info("Rejected %d-char message from %s", len(text), session.identity)
            return {"reply": responses.message_too_long(MAX_MESSAGE_CHARS), "rejected": True}

        emergency = is_emergency(text)
        if session.stage == Stage.EMERGENCY and not emergency:
            self._end_emergency(session)

        if emergency:
            intent = Intent.EMERGENCY
        else:
            intent = await self._classify(session, text)

        if intent == Intent.OTHER:
            unresolved_logger.info(
                "Unresolved message from %s at %s: %s", session.identity, session.stage.value, text,
            )
        session.register_intent(intent)
        return {"intent": intent, "session": session}

    @staticmethod
    def _end_emergency(session: Session) -> None:
        """The patient wrote about something else: resume where the episode began."""
        resumed = session.paused_stage or (Stage.SITUATION if session.first_name else Stage.START)
        logger.info("Emergency episode for %s ended, resuming at %s", session.identity, resumed.value)
        session.stage = resumed
        session.paused_stage = None
        session.emergency_warned = False

    async def _classify(self, session: Session, text: str) -> Intent:
        context = recent_context(compact(session.conversation_history))
        try:
            raw = await self.gateway.complete(
                get_classify_prompt(text, context), operation="classify", max_tokens=10,
            )
        except BudgetExceededError as exc:
            logger.info("Budget exhausted (%s), using keyword classifier", exc)
            return keyword_intent(text)
        except LLMUnavailableError as exc:
            logger.warning("Classifier unavailable, using keyword classifier: %s", exc)
            return keyword_intent(text)

        intent = parse_intent(raw)
        if intent is None:
            logger.warning("Classifier returned %r, outside the intent vocabulary", raw)
            return keyword_intent(text)
        return intent

    # ── Handler nodes ────────────────────────────────────────────────

    async def _handle_emergency(self, state: TurnState) -> dict:
        session = state["session"]
        if session.stage != Stage.EMERGENCY:
            session.paused_stage = session.stage
            session.stage = Stage.EMERGENCY
        if session.emergency_warned:
            reply = responses.emergency_reminder()
        else:
            reply = responses.emergency(session.first_name)
            session.emergency_warned = True
        logger.warning("Emergency episode for %s", session.identity)
        return {"reply": reply, "session": session}

    async def _handle_loop_guard(self, state: TurnState) -> dict:
        session = state["session"]
        logger.info(
            "Loop guard for %s (%s repeated %d times)",
            session.identity, session.last_intent, session.repeat_count,
        )
        return {"reply": responses.loop_breaker()}

    async def _handle_name_capture(self, state: TurnState) -> dict:
        session = state["session"]
        text = state["text"]
        name = extract_first_name(text, explicit_only=session.stage == Stage.START)

        if name is None:
            if session.stage == Stage.START:
                session.stage = Stage.AWAITING_NAME
                return {"reply": responses.ask_name(state["tenant"].name), "session": session}
            return {"reply": responses.ask_name_again(), "session": session}

        session.first_name = name
        session.stage = Stage.SITUATION
        reply = responses.welcome(name)
        session.conversation_history = [
            Turn(role="user", content=text),
            Turn(role="assistant", content=reply),
        ]
        logger.info("Captured first name for %s", session.identity)
        return {"reply": reply, "session": session, "reseeded": True}

    async def _handle_interrupt(self, state: TurnState) -> dict:
        session = state["session"]
        if state["intent"] == Intent.PRICE:
            deferral = responses.price_interrupt(session.first_name)
        else:
            deferral = responses.insurance_interrupt(session.first_name)
        question = responses.discovery_question(session.stage, session.first_name)
        return {"reply": f"{deferral}\n\n{question}"}

    async def _handle_objection(self, state: TurnState) -> dict:
        objection = match_objection(state["text"])
        logger.info("Objection %s from %s", objection.id, state["session"].identity)
        return {"reply": objection.reply}

    async def _handle_discovery(self, state: TurnState) -> dict:
        session = state["session"]
        answer = state["text"].strip()
        current = session.stage if session.stage in DISCOVERY_STAGES else session.next_open_stage()

        if current is None:
            return await self._enter_closing(state)
        if not answer:
            return {"reply": responses.empty_answer(session.first_name)}

        for slot in STAGE_SLOTS[current]:
            setattr(session, slot, answer)

        following = session.next_open_stage()
        if following is None:
            return await self._enter_closing(state)
        session.stage = following
        return {
            "reply": responses.discovery_question(following, session.first_name),
            "session": session,
        }

    async def _enter_closing(self, state: TurnState) -> dict:
        session = state["session"]
        session.stage = Stage.CLOSING
        pitch = await self._closing_pitch(session, state["tenant"])
        return {"reply": pitch, "session": session}

    async def _closing_pitch(self, session: Session, tenant: TenantConfig) -> str:
        """Six-paragraph pitch from the LLM, or the scripted one."""
        fallback = responses.closing_template(
            session.first_name, tenant.name, session.problem_context,
        )
        try:
            pitch = await self.gateway.complete(
                get_closing_prompt(tenant, session),
                operation="closing_pitch",
                system=get_system_prompt(tenant, session),
                model=MODEL_NAME,
                max_tokens=1024,
                temperature=0.3,
            )
        except (LLMUnavailableError, BudgetExceededError) as exc:
            logger.warning("Closing pitch unavailable, using template: %s", exc)
            return fallback

        paragraphs = [p.strip() for p in pitch.split("\n\n") if p.strip()]
        if len(paragraphs) != CLOSING_PARAGRAPHS:
            logger.warning(
                "Closing pitch had %d paragraphs instead of %d, using template",
                len(paragraphs), CLOSING_PARAGRAPHS,
            )
            return fallback
        return "\n\n".join(paragraphs)

    async def _handle_closing(self, state: TurnState) -> dict:
        session = state["session"]
        intent = state["intent"]
        name = session.first_name

        if intent in (Intent.AFFIRMATIVE, Intent.SCHEDULING):
            session.stage = Stage.SCHEDULING
            return {"reply": responses.ask_scheduling_preference(name), "session": session}
        if intent == Intent.PRICE:
            return {"reply": responses.price_answer(name)}
        if intent == Intent.INSURANCE:
            return {"reply": responses.insurance_answer(name)}
        if intent == Intent.NEGATIVE:
            return {"reply": responses.graceful_exit(name)}
        return {"reply": responses.closing_nudge(name)}

    async def _handle_scheduling(self, state: TurnState) -> dict:
        session = state["session"]
        tenant = state["tenant"]
        preference = state["text"].strip()
        name = session.first_name

        slot = resolve_preference(preference)
        if slot is None:
            return {"reply": responses.ask_preference_again(name)}
        session.scheduling_preference = preference

        if self.calendar is None or not tenant.calendar_id:
            session.stage = Stage.COMPLETE
            return {"reply": responses.scheduling_registered(name, preference), "session": session}

        try:
            event = await self.calendar.create_event(
                tenant.calendar_id,
                summary=f"Consulta - {name}",
                start=slot.start.isoformat(),
                end=slot.end.isoformat(),
                description=f"Paciente: {name} ({session.identity})\nQueixa: {session.problem_context or '-'}",
            )
        except CalendarAPIError as exc:
            logger.error("Could not book %s for %s: %s", slot.describe(), session.identity, exc)
            return {"reply": responses.scheduling_failed(name), "session": session}

        session.appointment_ref = event.get("id")
        session.stage = Stage.COMPLETE
        return {"reply": responses.scheduling_confirmed(name, slot.describe()), "session": session}

    async def _handle_complete(self, state: TurnState) -> dict:
        return {"reply": responses.already_registered(state["session"].first_name)}
