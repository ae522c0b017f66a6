"""Key-value persistence with automatic failover from Redis to memory.

Two interchangeable backends implement :class:`KeyValueBackend`:

* :class:`RedisBackend` — durable, shared across processes.
* :class:`~secretary.services.cache.MemoryBackend` — process-local.

:class:`FailoverStore` wraps one of each.  Every durable call carries its
own timeout; the first failure flips the store into *degraded* mode and all
traffic goes to memory until :meth:`FailoverStore.try_reconnect` succeeds.
Callers never see a Redis error — only :class:`StoreUnavailableError` when
the memory backend fails too.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import redis.asyncio as aioredis

from secretary.config import REDIS_URL, STORE_TIMEOUT_SECONDS
from secretary.services.cache import MemoryBackend
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreUnavailableError(Exception):
    """Raised when neither the durable nor the memory backend can serve a call."""


class KeyValueBackend(Protocol):
    """Minimal contract shared by Redis and the in-memory map."""

    name: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def count(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisBackend:
    """``redis.asyncio`` implementation of :class:`KeyValueBackend`."""

    name = "redis"

    def __init__(self, url: str | None = None, *, client: aioredis.Redis | None = None):
        if client is None:
            client = aioredis.from_url(url or REDIS_URL, decode_responses=True)
        self._client = client

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def count(self, prefix: str) -> int:
        total = 0
        async for _ in self._client.scan_iter(match=f"{prefix}*", count=500):
            total += 1
        return total

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class FailoverStore:
    """Routes calls to the durable backend until it fails, then to memory.

    ``durable=None`` means no durable backend is configured; the store is
    permanently degraded and everything lives in memory.
    """

    def __init__(
        self,
        durable: KeyValueBackend | None,
        fallback: MemoryBackend | None = None,
        *,
        timeout: float = STORE_TIMEOUT_SECONDS,
    ):
        self._durable = durable
        self.memory = fallback or MemoryBackend()
        self._timeout = timeout
        self._degraded = durable is None

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def backend_name(self) -> str:
        if self._degraded or self._durable is None:
            return self.memory.name
        return self._durable.name

    def mark_degraded(self, reason: str) -> None:
        """Switch to memory.  Sticky until :meth:`try_reconnect` succeeds."""
        if self._degraded:
            return
        self._degraded = True
        logger.warning("Durable store degraded, serving from memory (%s)", reason)
        metrics.record_event("StoreDegraded", reason=reason)

    async def try_reconnect(self) -> bool:
        """Ping the durable backend; clear *degraded* on success."""
        if self._durable is None or not self._degraded:
            return not self._degraded
        try:
            await asyncio.wait_for(self._durable.ping(), timeout=self._timeout)
        except Exception as exc:
            logger.debug("Durable store still unavailable: %s", type(exc).__name__)
            return False
        self._degraded = False
        logger.info("Durable store reconnected")
        return True

    # ── Routing ──────────────────────────────────────────────────────

    async def _call(
        self,
        operation: str,
        durable_call: Callable[[KeyValueBackend], Awaitable[T]],
        memory_call: Callable[[MemoryBackend], Awaitable[T]],
    ) -> T:
        if not self._degraded and self._durable is not None:
            t0 = time.perf_counter()
            try:
                result = await asyncio.wait_for(
                    durable_call(self._durable), timeout=self._timeout,
                )
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_success(self._durable.name, operation, latency_ms=elapsed)
                return result
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_failure(
                    self._durable.name, operation,
                    error_type=type(exc).__name__, latency_ms=elapsed,
                )
                self.mark_degraded(f"{operation}: {type(exc).__name__}")

        try:
            return await memory_call(self.memory)
        except Exception as exc:
            logger.critical("Memory store failed during %s: %s", operation, exc)
            raise StoreUnavailableError(f"session store unavailable ({operation})") from exc

    async def get(self, key: str) -> str | None:
        return await self._call("get", lambda b: b.get(key), lambda m: m.get(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._call(
            "set", lambda b: b.set(key, value, ttl), lambda m: m.set(key, value, ttl),
        )

    async def delete(self, key: str) -> bool:
        return await self._call("delete", lambda b: b.delete(key), lambda m: m.delete(key))

    async def count(self, prefix: str) -> int:
        return await self._call(
            "count", lambda b: b.count(prefix), lambda m: m.count(prefix),
        )

    async def close(self) -> None:
        if self._durable is not None:
            try:
                await self._durable.close()
            except Exception:
                logger.exception("Error closing durable store")
        await self.memory.close()


def create_store(url: str | None = None) -> FailoverStore:
    """Build the process store: Redis when configured, memory otherwise."""
    url = url if url is not None else REDIS_URL
    if not url:
        logger.info("REDIS_URL not set, sessions will live in memory only")
        return FailoverStore(None)
    return FailoverStore(RedisBackend(url))
