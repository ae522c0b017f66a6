"""Thread-safe in-memory key-value backend with TTLs and a byte ceiling.

This is the degraded-mode substitute for Redis: the same string keys and
string values, the same optional per-key TTL, kept in process memory.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via UTF-8 byte length of key + value, so the ceiling
  bounds what a long Redis outage can accumulate.
• **threading.Lock** for thread safety (handlers may run in worker
  threads as well as on the event loop).
• **Lazy expiry**: an expired entry is dropped the next time it is read,
  and ``purge_expired`` removes the rest in bulk.
• The async methods never await while holding the lock, so they are safe
  to call from the event loop.
• Purely ephemeral — data is lost on process restart.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

# Default ceiling: 64 MB
DEFAULT_MAX_BYTES = 64 * 1024 * 1024


class MemoryBackendClosed(RuntimeError):
    """Raised when the backend is used after ``close()``."""


class MemoryBackend:
    """LRU map of ``key → (value, size, expires_at)``."""

    name = "memory"

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_bytes = max_bytes
        self._current_bytes = 0
        self._store: OrderedDict[str, tuple[str, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()
        self._clock = clock
        self._closed = False

    @staticmethod
    def _estimate_bytes(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def _check_open(self) -> None:
        if self._closed:
            raise MemoryBackendClosed("memory backend is closed")

    def _drop(self, key: str) -> None:
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    def _live(self, key: str, now: float) -> bool:
        """True if *key* exists and has not expired (drops it otherwise)."""
        entry = self._store.get(key)
        if entry is None:
            return False
        expires_at = entry[2]
        if expires_at is not None and expires_at <= now:
            self._drop(key)
            return False
        return True

    # ── Backend contract ─────────────────────────────────────────────

    async def get(self, key: str) -> str | None:
        """Return the value (promoting it to MRU) or ``None``."""
        with self._lock:
            self._check_open()
            if not self._live(key, self._clock()):
                return None
            self._store.move_to_end(key)
            return self._store[key][0]

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Insert or overwrite *key*; evicts LRU entries if needed."""
        size = self._estimate_bytes(key, value)
        if size > self._max_bytes:
            logger.warning(
                "Memory store: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._check_open()
            if key in self._store:
                self._drop(key)

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Memory store: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    async def delete(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            self._check_open()
            if key in self._store:
                self._drop(key)
                return True
            return False

    async def count(self, prefix: str) -> int:
        """Number of live keys starting with *prefix*."""
        with self._lock:
            self._check_open()
            now = self._clock()
            keys = [k for k in self._store if k.startswith(prefix)]
            return sum(1 for k in keys if self._live(k, now))

    async def ping(self) -> bool:
        with self._lock:
            self._check_open()
        return True

    async def close(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0
            self._closed = True

    # ── Maintenance helpers (not part of the backend contract) ───────

    def items(self, prefix: str) -> Iterator[tuple[str, str]]:
        """Snapshot of live ``(key, value)`` pairs under *prefix*.

        Does *not* promote entries (read-only scan).
        """
        with self._lock:
            now = self._clock()
            snapshot = [
                (key, value)
                for key, (value, _, expires_at) in self._store.items()
                if key.startswith(prefix) and (expires_at is None or expires_at > now)
            ]
        return iter(snapshot)

    def purge_expired(self) -> int:
        """Drop every expired entry.  Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, (_, _, expires_at) in self._store.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                self._drop(key)
            return len(expired)

    def remove(self, key: str) -> bool:
        """Synchronous delete used by sweepers."""
        with self._lock:
            if key in self._store:
                self._drop(key)
                return True
            return False

    @property
    def current_bytes(self) -> int:
        """Total estimated bytes currently stored."""
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (including not-yet-purged)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        with self._lock:
            return self._live(key, self._clock())
