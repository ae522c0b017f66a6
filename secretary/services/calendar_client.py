"""HTTP client for the Google Calendar API v3 with retry logic and timeouts.

Only ``events.insert`` is needed: the secretary books the first
consultation straight into the clinic's calendar.  Requests carry an OAuth
access token as a Bearer token.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from secretary.config import CLINIC_TIMEZONE, GOOGLE_CALENDAR_BASE_URL, GOOGLE_CALENDAR_TOKEN
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class CalendarAPIError(Exception):
    """Raised when a Calendar API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class GoogleCalendarClient:
    """Thin async wrapper around Google Calendar ``events.insert``."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        *,
        timezone: str = CLINIC_TIMEZONE,
        backoff: float = INITIAL_BACKOFF_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token = token or GOOGLE_CALENDAR_TOKEN
        self._timezone = timezone
        self._backoff = backoff
        self._client = httpx.AsyncClient(
            base_url=base_url or GOOGLE_CALENDAR_BASE_URL,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = await self._client.request(method, path, json=json_body)
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    metrics.record_failure(
                        "google_calendar", path.rsplit("/", 1)[-1],
                        error_type=f"HTTP{response.status_code}", latency_ms=elapsed,
                    )
                    raise CalendarAPIError(
                        f"Calendar API error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success("google_calendar", path.rsplit("/", 1)[-1], latency_ms=elapsed)
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Calendar API attempt %d/%d failed (%s). Retrying…",
                    attempt, MAX_RETRIES, type(exc).__name__,
                )
            except CalendarAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Calendar API server error on attempt %d/%d. Retrying…",
                        attempt, MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))

        raise CalendarAPIError(
            f"Calendar API request failed after {MAX_RETRIES} retries: {last_error}"
        )

    # ── Public API ───────────────────────────────────────────────────

    async def create_event(
        self,
        calendar_id: str,
        *,
        summary: str,
        start: str,
        end: str,
        description: str = "",
    ) -> dict[str, Any]:
        """Insert an event; *start* / *end* are ISO 8601 date-times.

        Returns the created event resource (``id``, ``htmlLink``, …).
        """
        if not calendar_id:
            raise CalendarAPIError("clinic calendar id is not configured")

        body = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start, "timeZone": self._timezone},
            "end": {"dateTime": end, "timeZone": self._timezone},
        }
        event = await self._request(
            "POST", f"/calendars/{quote(calendar_id, safe='')}/events", json_body=body,
        )
        logger.info("Calendar event created: %s", event.get("htmlLink") or event.get("id"))
        return event

    async def aclose(self) -> None:
        await self._client.aclose()
