"""Deterministic text analysis: keyword intents, emergencies, names, objections.

These run without any LLM and therefore always work, including when the
budget is spent or the provider is down.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from secretary.models import Intent
from secretary.responses import OBJECTIONS, Objection

logger = logging.getLogger(__name__)


def normalize(text: str) -> str:
    """Lower-case and strip accents (``"Não"`` → ``"nao"``)."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped).strip()


def _contains(normalized: str, phrases) -> bool:
    return any(re.search(rf"\b{re.escape(p)}\b", normalized) for p in phrases)


# ── Emergencies ──────────────────────────────────────────────────────

EMERGENCY_KEYWORDS = (
    # pt
    "infarto", "ataque cardiaco", "dor no peito forte", "parada cardiaca",
    "nao consigo respirar", "falta de ar grave", "sufocando",
    "avc", "derrame", "convulsao", "desmaiei", "inconsciente",
    "sangramento grave", "muito sangue", "overdose", "envenenamento", "intoxicacao",
    "emergencia", "socorro", "samu", "ambulancia",
    "vou me matar", "quero morrer", "suicidio", "dor insuportavel",
    # en
    "heart attack", "chest pain", "can't breathe", "cannot breathe", "cant breathe",
    "stroke", "seizure", "unconscious", "fainted", "severe bleeding", "bleeding a lot",
    "poisoning", "emergency", "ambulance", "kill myself", "want to die", "suicide",
)


# "não é emergência", "not an emergency": the patient rules it out.
_NEGATED_EMERGENCY = re.compile(
    r"\b(?:nao (?:e|eh|tenho|ha|se trata de)|sem|nada de|not|no|isn't|is not|it's not)\s+"
    r"(?:(?:uma|um|an|a)\s+)?(?:emergencia|emergency|urgencia|urgente|urgent)\b"
)


def _emergency_phrases(normalized: str) -> bool:
    return _contains(_NEGATED_EMERGENCY.sub(" ", normalized), EMERGENCY_KEYWORDS)


def is_emergency(text: str) -> bool:
    return _emergency_phrases(normalize(text))


# ── Keyword intent fallback ──────────────────────────────────────────

# Evaluated in order; the first match wins.
INTENT_KEYWORDS: tuple[tuple[Intent, tuple[str, ...]], ...] = (
    (Intent.PRICE, (
        "valor", "valores", "preco", "quanto custa", "quanto e", "custa", "pagamento",
        "price", "cost", "how much", "fee",
    )),
    (Intent.INSURANCE, (
        "convenio", "plano de saude", "plano", "reembolso", "unimed", "amil",
        "insurance", "health plan",
    )),
    (Intent.SCHEDULING, (
        "agendar", "agendamento", "marcar", "horario", "horarios", "agenda", "disponivel",
        "appointment", "book", "schedule", "available",
    )),
    (Intent.SYMPTOMS, (
        "dor", "doi", "doendo", "sinto", "sintoma", "sintomas", "incomoda", "incomodo",
        "tontura", "febre", "insonia", "ansiedade", "cansaco",
        "pain", "hurts", "ache", "symptom", "symptoms", "dizzy", "fever",
    )),
    (Intent.NEGATIVE, (
        "nao", "nao quero", "agora nao", "nao obrigado", "nao obrigada",
        "nope", "not interested", "no thanks", "no way",
    )),
    (Intent.AFFIRMATIVE, (
        "sim", "claro", "pode ser", "quero", "com certeza", "bora", "vamos", "ok", "beleza",
        "yes", "yeah", "sure", "of course", "let's do it",
    )),
    (Intent.GREETING, (
        "oi", "ola", "bom dia", "boa tarde", "boa noite", "tudo bem", "e ai",
        "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    )),
)


def keyword_intent(text: str) -> Intent:
    """Classify *text* without an LLM.  Always returns a valid ``Intent``."""
    normalized = normalize(text)
    if _emergency_phrases(normalized):
        return Intent.EMERGENCY
    # "no" is also a Portuguese preposition, so only a bare "no" counts
    if normalized.strip(" .!") == "no":
        return Intent.NEGATIVE
    for intent, phrases in INTENT_KEYWORDS:
        if _contains(normalized, phrases):
            return intent
    return Intent.OTHER


def parse_intent(raw: str) -> Intent | None:
    """Map an LLM classification to ``Intent``; ``None`` if outside the vocabulary."""
    cleaned = raw.strip().strip(".\"'`").lower()
    if not cleaned:
        return None
    token = cleaned.split()[0]
    try:
        return Intent(token)
    except ValueError:
        return None


# ── Objections ───────────────────────────────────────────────────────

def match_objection(text: str) -> Objection | None:
    normalized = normalize(text)
    for objection in OBJECTIONS:
        if _contains(normalized, objection.keywords):
            logger.debug("Objection detected: %s", objection.id)
            return objection
    return None


# ── First-name extraction ────────────────────────────────────────────

_NAME_PATTERN = re.compile(
    r"^\s*(?:(?P<explicit>my name is|my name's|this is|it's|call me|"
    r"meu nome [eé]|me chamo|pode me chamar de|eu sou [oa]|sou [oa]|aqui [eé] [oa]|aqui [eé])"
    r"|(?P<described>i am|i'm|im|eu sou|sou))\s+(?P<rest>.+)$",
    re.IGNORECASE,
)

_LEADING_GREETING = re.compile(
    r"^\s*(?:oi|ol[aá]|hello|hi|hey|bom dia|boa tarde|boa noite|good morning|"
    r"good afternoon|good evening)\b[\s,!.]*",
    re.IGNORECASE,
)

NAME_STOPLIST = frozenset({
    "oi", "ola", "bom", "boa", "dia", "tarde", "noite", "tudo", "bem", "hello", "hi",
    "hey", "good", "morning", "evening", "afternoon", "sim", "nao", "yes", "no", "ok",
    "obrigado", "obrigada", "thanks", "quero", "gostaria", "preciso", "estou", "tenho",
    "fine", "dor", "consulta", "agendar", "marcar", "valor", "quanto", "doutor", "doutora",
    "secretaria", "paciente", "teste", "test",
})

# Words that follow "I am" / "sou" when the patient describes themselves
SELF_DESCRIPTION_WORDS = frozenset({
    "diabetico", "diabetica", "hipertenso", "hipertensa", "gravida", "alergico", "alergica",
    "asmatico", "asmatica", "ansioso", "ansiosa", "cardiaco", "cardiaca", "idoso", "idosa",
    "novo", "nova", "cliente", "mae", "pai", "filho", "filha", "casado", "casada",
    "muito", "bem", "so", "eu", "de", "do", "da", "aposentado", "aposentada",
    "not", "very", "really", "just", "still", "sick", "ill", "tired", "diabetic",
    "pregnant", "allergic", "asthmatic", "anxious", "worried", "new", "here", "back",
    "okay", "sorry", "interested", "calling", "writing", "in", "from", "a", "an", "the",
})

MAX_BARE_NAME_WORDS = 3


def _describes_self(word: str) -> bool:
    normalized = normalize(word)
    # "I am having / feeling / looking ..."
    return normalized in SELF_DESCRIPTION_WORDS or (len(normalized) > 4 and normalized.endswith("ing"))


def extract_first_name(text: str, *, explicit_only: bool = False) -> str | None:
    """Return a capitalized first name from *text*, or ``None`` if invalid.

    Accepts "My name is João", "me chamo Ana", or a bare short reply such as
    "Carlos Silva".  Greetings and common words are rejected.  With
    *explicit_only*, only the "my name is …" forms are accepted.
    """
    candidate = _LEADING_GREETING.sub("", text).strip()
    match = _NAME_PATTERN.match(candidate)
    if match:
        candidate = match.group("rest")
        described = match.group("described") is not None
    elif explicit_only or len(candidate.split()) > MAX_BARE_NAME_WORDS:
        return None
    else:
        described = False

    words = candidate.split()
    if not words:
        return None
    first = "".join(ch for ch in words[0] if ch.isalpha())
    if len(first) < 2 or normalize(first) in NAME_STOPLIST:
        return None
    if described and _describes_self(first):
        return None
    return first[0].upper() + first[1:].lower()
