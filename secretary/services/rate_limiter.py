"""Sliding-window admission control per identity.

The window lives in the same :class:`FailoverStore` as the sessions, so a
Redis outage moves both to memory together.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from secretary.services.metrics import metrics
from secretary.services.sessions import SessionStore

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

COLD_START_THRESHOLD = 5
DEFAULT_THRESHOLD = 10
ENGAGED_THRESHOLD = 15
ENGAGED_HISTORY_LENGTH = 20


def threshold_for(history_length: int) -> int:
    """Messages allowed per window for a conversation of this size."""
    if history_length == 0:
        return COLD_START_THRESHOLD
    if history_length > ENGAGED_HISTORY_LENGTH:
        return ENGAGED_THRESHOLD
    return DEFAULT_THRESHOLD


class RateLimiter:
    def __init__(
        self,
        sessions: SessionStore,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._sessions = sessions
        self._store = sessions.store
        self._clock = clock

    @staticmethod
    def _key(identity: str) -> str:
        return f"ratelimit:{identity}"

    async def _load_window(self, identity: str) -> list[float]:
        raw = await self._store.get(self._key(identity))
        if not raw:
            return []
        try:
            stamps = json.loads(raw)
            return [float(s) for s in stamps]
        except (ValueError, TypeError):
            logger.warning("Discarding malformed rate window for %s", identity)
            return []

    async def is_rate_limited(
        self, identity: str, history_length: int | None = None,
    ) -> bool:
        """Return ``True`` to reject; otherwise register this attempt.

        Pass *history_length* when the caller already holds the session, to
        avoid a second session read.
        """
        if history_length is None:
            session = await self._sessions.get(identity)
            history_length = len(session.conversation_history)
        threshold = threshold_for(history_length)

        now = self._clock()
        recent = [t for t in await self._load_window(identity) if now - t < WINDOW_SECONDS]

        if len(recent) >= threshold:
            logger.info(
                "Rate limited %s (%d in last %ds, threshold %d)",
                identity, len(recent), WINDOW_SECONDS, threshold,
            )
            metrics.record_event("RateLimited", threshold=str(threshold))
            return True

        recent.append(now)
        recent = recent[-threshold:]
        await self._store.set(self._key(identity), json.dumps(recent), WINDOW_SECONDS)
        return False
