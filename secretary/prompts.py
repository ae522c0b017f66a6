"""Prompts for the NEPQ secretary's LLM calls."""

import json
from datetime import datetime
from zoneinfo import ZoneInfo

from secretary.config import CLINIC_TIMEZONE, CONSULTATION_VALUE, CONTACT_PHONE
from secretary.models import Intent, Session, TenantConfig

SYSTEM_PROMPT_TEMPLATE = """You are the virtual secretary of **{doctor_name}**'s medical office.
Your communication is empathetic, professional and subtly persuasive. You apply the
NEPQ method (situation → problem → implication → prior treatment → solution) and you
**NEVER** give medical advice, diagnoses or treatment recommendations.

## Current Date & Time
Today is **{current_date}** ({current_day_of_week}), {current_time} in {timezone}.

## Current Context
- Conversation stage: {stage}
- Patient's first name: {first_name}

## What the patient told us so far
{slots}

## Clinic Knowledge Base
{knowledge_base}

## Clinic Facts
- The first consultation costs **R$ {consultation_value}** and is private care (no insurance).
- Patients who prefer to talk to a human can call **{contact_phone}**.

## Golden Rules
1. One question at a time. Be brief and direct.
2. Use the patient's first name whenever it feels natural.
3. Never make up facts that are not in the knowledge base.
"""


CLASSIFY_PROMPT = (
    "Classify the patient's latest message for a medical office secretary. "
    "Reply with exactly one word from this list: {categories}.\n\n"
    "- greeting: hello, good morning, small talk\n"
    "- scheduling: wants to book, asks for a date or time\n"
    "- price: asks about cost, values, payment\n"
    "- insurance: asks about health insurance or plans\n"
    "- symptoms: describes pain, discomfort or a health problem\n"
    "- affirmative: yes, agrees, accepts\n"
    "- negative: no, declines, not interested\n"
    "- emergency: describes a life-threatening situation\n"
    "- other: anything else\n\n"
    "{context}Latest message: {message}\n\n"
    "Category:"
)


CLOSING_PROMPT = (
    "Write the closing message for {first_name}, in Brazilian Portuguese, using what "
    "the patient shared:\n{slots}\n\n"
    "The message MUST have exactly six paragraphs separated by one blank line, in "
    "this order:\n"
    "1. Empathy: recap the patient's problem and how it affects their life.\n"
    "2. Social proof: patients with similar cases were helped by {doctor_name}.\n"
    "3. Value: what the first consultation delivers (diagnosis and a personal plan).\n"
    "4. Pricing and terms: the consultation is private care and costs R$ {consultation_value}.\n"
    "5. Pre-empt objections: time, cost and doubt, in one short paragraph.\n"
    "6. Call to action: ask which day and period suits them best for the visit.\n\n"
    "Do not add headings, lists or anything outside the six paragraphs."
)


TRANSLATE_SYSTEM_PROMPT = (
    "Translate the user's text to clear, natural {language}. Keep the persuasive "
    "tone, names, numbers and line breaks. Reply with the translation only."
)

DETECT_LANGUAGE_PROMPT = (
    "Detect the user's language. Reply ONLY with \"pt\" for Brazilian Portuguese "
    "or \"en\" for English.\n"
    'Text: """{text}"""'
)

LANGUAGE_NAMES = {"pt": "Brazilian Portuguese", "en": "English"}


def _render_slots(session: Session) -> str:
    lines = [f"- {name}: {value}" for name, value in session.slots().items() if value]
    return "\n".join(lines) or "- (nothing yet)"


def _render_knowledge_base(knowledge_base) -> str:
    if not knowledge_base:
        return "(no knowledge base configured)"
    if isinstance(knowledge_base, str):
        return knowledge_base
    return json.dumps(knowledge_base, ensure_ascii=False, indent=2)


def get_system_prompt(tenant: TenantConfig, session: Session) -> str:
    """Return the system prompt with the clinic, date and session injected."""
    now = datetime.now(ZoneInfo(CLINIC_TIMEZONE))
    return SYSTEM_PROMPT_TEMPLATE.format(
        doctor_name=tenant.name,
        current_date=now.strftime("%d/%m/%Y"),
        current_day_of_week=now.strftime("%A"),
        current_time=now.strftime("%H:%M"),
        timezone=CLINIC_TIMEZONE,
        stage=session.stage.value,
        first_name=session.first_name or "patient",
        slots=_render_slots(session),
        knowledge_base=_render_knowledge_base(tenant.knowledge_base),
        consultation_value=CONSULTATION_VALUE,
        contact_phone=CONTACT_PHONE,
    )


def get_classify_prompt(message: str, context: str = "") -> str:
    categories = ", ".join(intent.value for intent in Intent)
    return CLASSIFY_PROMPT.format(categories=categories, context=context, message=message)


def get_closing_prompt(tenant: TenantConfig, session: Session) -> str:
    return CLOSING_PROMPT.format(
        first_name=session.first_name or "the patient",
        slots=_render_slots(session),
        doctor_name=tenant.name,
        consultation_value=CONSULTATION_VALUE,
    )


def get_translate_system_prompt(target: str) -> str:
    return TRANSLATE_SYSTEM_PROMPT.format(language=LANGUAGE_NAMES.get(target, target))
