"""Per-identity session persistence on top of :class:`FailoverStore`."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from secretary.config import SESSION_TTL_SECONDS
from secretary.models import Session, load_session
from secretary.services.metrics import metrics
from secretary.services.store import FailoverStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
IDLE_HORIZON = timedelta(hours=2)


def session_key(identity: str) -> str:
    return f"{SESSION_PREFIX}{identity}"


class SessionStore:
    """Load, save and reset sessions; never loses a user to a Redis outage.

    Reads and writes that fail on the durable backend degrade to memory and
    are otherwise swallowed.  Only :class:`StoreUnavailableError` (both
    backends down) reaches the caller.
    """

    def __init__(self, store: FailoverStore, *, ttl: int = SESSION_TTL_SECONDS):
        self.store = store
        self._ttl = ttl
        self._write_conflicts = 0

    # ── Internal helpers ─────────────────────────────────────────────

    @staticmethod
    def _parse(raw: str, identity: str) -> Session:
        return load_session(json.loads(raw), identity)

    async def _write(self, session: Session) -> None:
        await self.store.set(
            session_key(session.identity), session.model_dump_json(), self._ttl,
        )

    async def _read(self, identity: str) -> Session | None:
        key = session_key(identity)
        from_durable = not self.store.degraded
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return self._parse(raw, identity)
        except (ValueError, ValidationError) as exc:
            logger.warning("Malformed session payload for %s: %s", identity, exc)

        if from_durable and not self.store.degraded:
            self.store.mark_degraded("malformed payload")
            raw = await self.store.get(key)
            if raw is not None:
                try:
                    return self._parse(raw, identity)
                except (ValueError, ValidationError):
                    logger.warning("Malformed in-memory session for %s, starting fresh", identity)
        return None

    # ── Public API ───────────────────────────────────────────────────

    async def get(self, identity: str) -> Session:
        """Return the session for *identity*, creating it if absent."""
        from_durable = not self.store.degraded
        session = await self._read(identity)
        if session is None:
            session = Session(identity=identity)
            logger.info("New session for %s", identity)
            await self._write(session)
            return session

        session.touch()
        if from_durable and not self.store.degraded:
            # Renews the TTL; revision is unchanged because nothing else moved.
            await self._write(session)
        return session

    async def save(self, identity: str, session: Session) -> bool:
        """Persist *session*.

        Returns ``True`` when the write landed on the durable backend and
        ``False`` when it is only held in memory.  A stored revision newer
        than the working copy's means another request wrote in between; the
        conflict is logged and counted, then this write wins.
        """
        stored = await self._read(identity)
        stored_revision = stored.revision if stored is not None else 0
        if stored is not None and stored_revision > session.revision:
            self._write_conflicts += 1
            logger.warning(
                "Concurrent write for %s: stored revision %d > working copy %d "
                "(last write wins)",
                identity, stored_revision, session.revision,
            )
            metrics.record_event("WriteConflict")

        session.identity = identity
        session.revision = max(stored_revision, session.revision) + 1
        await self._write(session)
        return not self.store.degraded

    async def reset_session(self, identity: str) -> Session:
        """Wipe everything except the identity."""
        await self.store.delete(session_key(identity))
        session = Session(identity=identity)
        await self._write(session)
        logger.info("Session reset for %s", identity)
        return session

    async def stats(self) -> dict:
        return {
            "count": await self.store.count(SESSION_PREFIX),
            "backend": self.store.backend_name,
            "degraded": self.store.degraded,
            "write_conflicts": self._write_conflicts,
        }

    def sweep_idle(self, now: datetime | None = None) -> int:
        """Delete in-memory sessions idle for longer than ``IDLE_HORIZON``.

        Redis entries expire through their TTL and are not touched here.
        """
        now = now or datetime.now(UTC)
        cutoff = now - IDLE_HORIZON
        memory = self.store.memory
        removed = memory.purge_expired()
        for key, raw in memory.items(SESSION_PREFIX):
            try:
                last_activity = self._parse(raw, key[len(SESSION_PREFIX):]).last_activity
            except (ValueError, ValidationError):
                last_activity = None
            if last_activity is None or last_activity < cutoff:
                if memory.remove(key):
                    removed += 1
        if removed:
            logger.info("Swept %d idle in-memory sessions", removed)
        return removed

    async def close(self) -> None:
        await self.store.close()
