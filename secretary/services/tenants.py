"""Clinic (tenant) configuration, resolved from the bot-instance id.

With Supabase configured, each WhatsApp phone-number id maps to one row of
the ``clinics`` table.  Otherwise the process serves a single clinic built
from environment variables and ``KNOWLEDGE_BASE.md``.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Protocol

import httpx

from secretary.config import (
    CLINIC_CALENDAR_ID,
    CLINIC_NAME,
    SUPABASE_API_KEY,
    SUPABASE_URL,
)
from secretary.models import TenantConfig
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0
KNOWLEDGE_BASE_PATH = Path(__file__).resolve().parent.parent.parent / "KNOWLEDGE_BASE.md"


class TenantNotFoundError(Exception):
    """Raised when no clinic is configured for a bot-instance id."""


class TenantDirectory(Protocol):
    async def resolve(self, bot_instance_id: str | None) -> TenantConfig: ...


class StaticTenantDirectory:
    """In-process tenants, optionally with a default for unknown ids."""

    def __init__(
        self,
        tenants: dict[str, TenantConfig] | None = None,
        default: TenantConfig | None = None,
    ):
        self._tenants = tenants or {}
        self._default = default

    async def resolve(self, bot_instance_id: str | None) -> TenantConfig:
        tenant = self._tenants.get(bot_instance_id or "", self._default)
        if tenant is None:
            raise TenantNotFoundError(f"no clinic configured for {bot_instance_id!r}")
        return tenant


class SupabaseTenantDirectory:
    """Looks clinics up through the Supabase PostgREST endpoint."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        key = api_key or SUPABASE_API_KEY
        self._client = httpx.AsyncClient(
            base_url=f"{(url or SUPABASE_URL).rstrip('/')}/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def resolve(self, bot_instance_id: str | None) -> TenantConfig:
        if not bot_instance_id:
            raise TenantNotFoundError("message carries no bot-instance id")

        t0 = time.perf_counter()
        try:
            response = await self._client.get(
                "/clinics",
                params={
                    "select": "doctor_name,knowledge_base,google_calendar_id",
                    "whatsapp_phone_id": f"eq.{bot_instance_id}",
                    "limit": "1",
                },
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "supabase", "resolve_tenant", error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise TenantNotFoundError(f"clinic lookup failed for {bot_instance_id!r}: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("supabase", "resolve_tenant", latency_ms=elapsed)
        if not rows:
            raise TenantNotFoundError(f"no clinic configured for {bot_instance_id!r}")

        row = rows[0]
        return TenantConfig(
            name=row.get("doctor_name") or CLINIC_NAME,
            knowledge_base=row.get("knowledge_base"),
            calendar_id=row.get("google_calendar_id"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def load_knowledge_base(path: Path = KNOWLEDGE_BASE_PATH) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning("Knowledge base not found at %s", path)
        return None


def build_tenant_directory() -> TenantDirectory:
    if SUPABASE_URL and SUPABASE_API_KEY:
        logger.info("Resolving clinics from Supabase")
        return SupabaseTenantDirectory()
    default = TenantConfig(
        name=CLINIC_NAME,
        knowledge_base=load_knowledge_base(),
        calendar_id=CLINIC_CALENDAR_ID or None,
    )
    logger.info("Serving a single static clinic: %s", default.name)
    return StaticTenantDirectory(default=default)
