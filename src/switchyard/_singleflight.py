"""Async single-flight TTL cache.

Coordinates concurrent lookups for the same key so only one coroutine
performs the (network) work while the others await the same task. The work
runs in a task no caller owns, so cancelling one caller never cancels the
load for the rest. Reads never take the lock, and the lock is never held
across the work itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
V = TypeVar("V")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    _ = fut.exception()


@dataclass
class SingleFlightCache(Generic[K, V]):
    """Key -> value cache with per-entry expiry and coalesced refreshes.

    Entries are replaced wholesale; a reader sees either the old value or
    the new one, never a partially updated record.
    """

    ttl_s: float
    clock: Callable[[], float] = time.monotonic
    _entries: dict[K, tuple[V, float]] = field(default_factory=dict)
    _inflight: dict[K, asyncio.Task[V]] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def get(self, key: K) -> V | None:
        """Return the cached value if present and not expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            return None
        return value

    def set(self, key: K, value: V, ttl_s: float | None = None) -> None:
        """Store *value* under *key*, replacing any previous entry."""
        ttl = self.ttl_s if ttl_s is None else ttl_s
        self._entries[key] = (value, self.clock() + max(0.0, ttl))

    def clear(self, key: K | None = None) -> None:
        """Drop one entry, or every entry when *key* is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def inflight(self, key: K) -> bool:
        """Whether a refresh for *key* is currently running."""
        return key in self._inflight

    async def get_or_load(
        self,
        key: K,
        work: Callable[[], Awaitable[V]],
        *,
        force: bool = False,
    ) -> V:
        """Return the cached value for *key*, or compute it once.

        - If cached (and not *force*), returns immediately.
        - If a load is in flight, awaits the existing task.
        - Otherwise, starts *work* in a new task and awaits it.

        Every caller awaits the task through ``asyncio.shield``: a cancelled
        caller stops waiting while the load keeps running for the others.
        """
        if not force:
            cached = self.get(key)
            if cached is not None:
                return cached

        async with self._lock:
            if not force:
                cached = self.get(key)
                if cached is not None:
                    return cached

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.get_running_loop().create_task(self._load(key, work))
                task.add_done_callback(consume_future_exception)
                self._inflight[key] = task

        return await asyncio.shield(task)

    async def _load(self, key: K, work: Callable[[], Awaitable[V]]) -> V:
        try:
            value = await work()
            self.set(key, value)
            return value
        finally:
            async with self._lock:
                self._inflight.pop(key, None)
