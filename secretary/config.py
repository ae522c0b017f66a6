"""Centralized configuration for the NEPQ clinic secretary.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/nepq-secretary/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  boto3 is an optional extra

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/nepq-secretary/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /nepq-secretary/{name} (AWS)."
    )


def _optional_env(name: str, default: str = "") -> str:
    """Like ``_require_env`` but falls back to *default* instead of raising."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
# Reply generation (closing pitch) and the cheap classifier / translator
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")

# Whisper transcription for voice notes (optional)
OPENAI_API_KEY: str = _optional_env("OPENAI_API_KEY")
OPENAI_BASE_URL: str = "https://api.openai.com/v1"
TRANSCRIPTION_MODEL: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "20"))
LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "3"))

# ── Cost budget ─────────────────────────────────────────────────────
HOURLY_TOKEN_CAP: int = int(os.getenv("HOURLY_TOKEN_CAP", "200000"))
HOURLY_REQUEST_CAP: int = int(os.getenv("HOURLY_REQUEST_CAP", "500"))
DAILY_TOKEN_CAP: int = int(os.getenv("DAILY_TOKEN_CAP", "2000000"))
DAILY_REQUEST_CAP: int = int(os.getenv("DAILY_REQUEST_CAP", "5000"))

# ── WhatsApp Cloud API ──────────────────────────────────────────────
WHATSAPP_TOKEN: str = _require_env("WHATSAPP_TOKEN")
WHATSAPP_PHONE_ID: str = _require_env("WHATSAPP_PHONE_ID")
WHATSAPP_BASE_URL: str = os.getenv("WHATSAPP_BASE_URL", "https://graph.facebook.com/v19.0")
VERIFY_TOKEN: str = _optional_env("VERIFY_TOKEN")

# ── Session store ───────────────────────────────────────────────────
REDIS_URL: str = _optional_env("REDIS_URL")
STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "2.0"))
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(24 * 60 * 60)))
HISTORY_CEILING: int = int(os.getenv("HISTORY_CEILING", "100"))

# ── Tenants (clinic configuration) ──────────────────────────────────
SUPABASE_URL: str = _optional_env("SUPABASE_URL")
SUPABASE_API_KEY: str = _optional_env("SUPABASE_API_KEY")
CLINIC_NAME: str = os.getenv("CLINIC_NAME", "Dr. Quelson")
CLINIC_CALENDAR_ID: str = os.getenv("CLINIC_CALENDAR_ID", "")
CLINIC_TIMEZONE: str = os.getenv("CLINIC_TIMEZONE", "America/Sao_Paulo")
CONTACT_PHONE: str = os.getenv("CONTACT_PHONE", "(11) 4000-0000")
CONSULTATION_VALUE: str = os.getenv("CONSULTATION_VALUE", "400")

# ── Google Calendar ─────────────────────────────────────────────────
GOOGLE_CALENDAR_TOKEN: str = _optional_env("GOOGLE_CALENDAR_TOKEN")
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"

# ── Conversation guards ─────────────────────────────────────────────
MAX_MESSAGE_CHARS: int = int(os.getenv("MAX_MESSAGE_CHARS", "500"))
CANONICAL_LANGUAGE: str = "pt"

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
