"""Domain models: the per-identity ``Session`` and its vocabularies.

Sessions are persisted as JSON.  Every payload read back from a backend
goes through :func:`migrate_payload` exactly once before validation, so a
``Session`` instance is always structurally complete regardless of which
release wrote it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

SCHEMA_VERSION = 1


class Stage(str, Enum):
    """Position of the conversation in the scripted question sequence."""

    START = "start"
    AWAITING_NAME = "awaiting_name"
    SITUATION = "situation"
    PROBLEM = "problem"
    IMPLICATION = "implication"
    PRIOR_TREATMENT = "prior_treatment"
    SOLUTION = "solution"
    CLOSING = "closing"
    SCHEDULING = "scheduling"
    COMPLETE = "complete"
    EMERGENCY = "emergency"


# Discovery stages in order; each one owns exactly one open question.
DISCOVERY_STAGES: tuple[Stage, ...] = (
    Stage.SITUATION,
    Stage.PROBLEM,
    Stage.IMPLICATION,
    Stage.PRIOR_TREATMENT,
    Stage.SOLUTION,
)

# Slot(s) filled by the reply to each discovery question
STAGE_SLOTS: dict[Stage, tuple[str, ...]] = {
    Stage.SITUATION: ("problem_context",),
    Stage.PROBLEM: ("duration", "worsening"),
    Stage.IMPLICATION: ("impact",),
    Stage.PRIOR_TREATMENT: ("tried_solutions",),
    Stage.SOLUTION: ("desired_outcome",),
}


class Intent(str, Enum):
    """Fixed vocabulary for classifying one inbound message."""

    GREETING = "greeting"
    SCHEDULING = "scheduling"
    PRICE = "price"
    INSURANCE = "insurance"
    SYMPTOMS = "symptoms"
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    EMERGENCY = "emergency"
    OTHER = "other"


class Turn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class TenantConfig(BaseModel):
    """Clinic configuration resolved from the bot-instance id."""

    name: str
    knowledge_base: Any = None
    calendar_id: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Session(BaseModel):
    """Everything the dialogue needs to remember about one identity."""

    schema_version: int = SCHEMA_VERSION
    identity: str
    stage: Stage = Stage.START
    first_name: str | None = None
    last_intent: Intent | None = None
    repeat_count: int = 0

    # NEPQ slots
    problem_context: str | None = None
    duration: str | None = None
    worsening: str | None = None
    tried_solutions: str | None = None
    impact: str | None = None
    desired_outcome: str | None = None

    conversation_history: list[Turn] = Field(default_factory=list)
    tenant_config: TenantConfig | None = None
    language: str | None = None

    emergency_warned: bool = False
    paused_stage: Stage | None = None

    scheduling_preference: str | None = None
    appointment_ref: str | None = None

    revision: int = 0
    last_activity: datetime = Field(default_factory=_utcnow)
    created_at: datetime = Field(default_factory=_utcnow)

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def register_intent(self, intent: Intent) -> None:
        """Update loop-detection counters for a newly classified intent."""
        if self.last_intent == intent:
            self.repeat_count += 1
        else:
            self.repeat_count = 0
        self.last_intent = intent

    def slots(self) -> dict[str, str | None]:
        return {
            name: getattr(self, name)
            for names in STAGE_SLOTS.values()
            for name in names
        }

    def next_open_stage(self) -> Stage | None:
        """First discovery stage whose slot is still empty, or ``None``."""
        for stage in DISCOVERY_STAGES:
            if any(getattr(self, slot) is None for slot in STAGE_SLOTS[stage]):
                return stage
        return None


# ── Migration ────────────────────────────────────────────────────────

_LEGACY_FIELDS = {
    "firstName": "first_name",
    "lastIntent": "last_intent",
    "repeatCount": "repeat_count",
    "conversationHistory": "conversation_history",
    "clinicConfig": "tenant_config",
    "tenantConfig": "tenant_config",
    "problemDescription": "problem_context",
    "problemContext": "problem_context",
    "problemDuration": "duration",
    "problemWorsening": "worsening",
    "triedSolutions": "tried_solutions",
    "problemImpact": "impact",
    "desiredOutcome": "desired_outcome",
    "lastActivity": "last_activity",
    "createdAt": "created_at",
}

_LEGACY_STAGES = {
    "situation_start": Stage.SITUATION,
    "problem_duration": Stage.PROBLEM,
    "problem_worsening": Stage.PROBLEM,
    "problem_tried_solutions": Stage.PRIOR_TREATMENT,
    "implication_impact": Stage.IMPLICATION,
    "solution_visualization": Stage.SOLUTION,
    "closing": Stage.CLOSING,
    "scheduling": Stage.SCHEDULING,
}

_LEGACY_INTENTS = {
    "saudacao": Intent.GREETING,
    "agendar": Intent.SCHEDULING,
    "valores": Intent.PRICE,
    "convenio": Intent.INSURANCE,
    "sintomas": Intent.SYMPTOMS,
    "positiva": Intent.AFFIRMATIVE,
    "outra": Intent.OTHER,
}


def _migrate_v0(payload: dict[str, Any]) -> dict[str, Any]:
    """Convert the camelCase shape written by the first release."""
    out: dict[str, Any] = {}
    for key, value in payload.items():
        out[_LEGACY_FIELDS.get(key, key)] = value

    legacy_stage = out.pop("nepqStage", None)
    asked_name = out.pop("askedName", False)
    if "stage" not in out or out["stage"] not in Stage._value2member_map_:
        if legacy_stage in _LEGACY_STAGES:
            out["stage"] = _LEGACY_STAGES[legacy_stage]
        elif asked_name and not out.get("first_name"):
            out["stage"] = Stage.AWAITING_NAME
        elif out.get("first_name"):
            out["stage"] = Stage.SITUATION
        else:
            out["stage"] = Stage.START

    intent = out.get("last_intent")
    if intent is not None and intent not in Intent._value2member_map_:
        mapped = _LEGACY_INTENTS.get(intent)
        out["last_intent"] = mapped.value if mapped else None

    # Epoch milliseconds → datetime
    for field in ("last_activity", "created_at"):
        value = out.get(field)
        if isinstance(value, (int, float)):
            out[field] = datetime.fromtimestamp(value / 1000, tz=UTC)

    tenant = out.get("tenant_config")
    if isinstance(tenant, dict) and "name" not in tenant:
        out["tenant_config"] = {
            "name": tenant.get("doctorName") or tenant.get("doctor_name") or "",
            "knowledge_base": tenant.get("knowledgeBase") or tenant.get("knowledge_base"),
            "calendar_id": tenant.get("calendarId") or tenant.get("google_calendar_id"),
        }

    out.pop("lastMessage", None)
    out["schema_version"] = 1
    return out


_MIGRATIONS = {0: _migrate_v0}


def migrate_payload(payload: dict[str, Any], identity: str) -> dict[str, Any]:
    """Bring a stored session dict up to ``SCHEMA_VERSION``."""
    data = dict(payload)
    version = int(data.get("schema_version", 0))
    while version < SCHEMA_VERSION:
        data = _MIGRATIONS[version](data)
        version = int(data["schema_version"])
    data.setdefault("identity", identity)
    return data


def load_session(payload: dict[str, Any], identity: str) -> Session:
    return Session.model_validate(migrate_payload(payload, identity))
