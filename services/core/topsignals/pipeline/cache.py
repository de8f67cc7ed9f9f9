"""In-process result cache with TTL, stale fallback and single-flight refresh."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union


logger = logging.getLogger(__name__)

Ttl = Union[float, Callable[[Any], float]]


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float  # clock seconds

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class ResultCache:
    """
    Memoize fully assembled results per key.

    Concurrent callers that find an entry missing or expired collapse onto a
    single ``compute`` call per key. Expired entries are kept for
    ``stale_grace_seconds`` so a failed refresh can still serve them, marked
    stale through ``mark_stale``; older entries are evicted lazily on read.
    """

    def __init__(
        self,
        stale_grace_seconds: float = 86400.0,
        mark_stale: Callable[[Any], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_grace_seconds = stale_grace_seconds
        self._mark_stale = mark_stale or (lambda value: value)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def _lookup(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key``, evicting it if it is past the stale grace window."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at + self.stale_grace_seconds:
            logger.info(f"Evicting cache entry '{key}'")
            del self._entries[key]
            return None
        return entry

    def _fresh(self, key: str) -> CacheEntry | None:
        entry = self._lookup(key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry
        return None

    def get(self, key: str) -> Any | None:
        """Fresh value for ``key`` or None."""
        entry = self._fresh(key)
        return entry.value if entry is not None else None

    def peek(self, key: str) -> CacheEntry | None:
        """Entry for ``key`` whether fresh or expired (within the grace window)."""
        return self._lookup(key)

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_compute(
        self,
        key: str,
        ttl: Ttl,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value for ``key`` or compute, store and return it.

        Callers arriving while a refresh for ``key`` is running await that same
        refresh and receive its outcome, value or exception alike.

        Args:
            key: Cache key (one per logical endpoint)
            ttl: Seconds, or a function of the computed value returning seconds
            compute: Coroutine function producing the value

        Returns:
            The fresh value, a newly computed one, or a stale one if compute failed
        """
        entry = self._fresh(key)
        if entry is not None:
            return entry.value

        flight = self._inflight.get(key)
        if flight is None:
            flight = asyncio.ensure_future(self._refresh(key, ttl, compute))
            self._inflight[key] = flight
            flight.add_done_callback(lambda done: self._land(key, done))
        # A cancelled caller must not cancel the refresh the others are waiting on.
        return await asyncio.shield(flight)

    def _land(self, key: str, flight: asyncio.Future) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        if not flight.cancelled():
            # Consume the outcome even when every waiter was cancelled.
            flight.exception()

    async def _refresh(self, key: str, ttl: Ttl, compute: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await compute()
        except Exception as e:
            previous = self.peek(key)
            if previous is None:
                raise
            logger.warning(f"Refresh of '{key}' failed ({e}); serving stale value")
            return self._mark_stale(previous.value)

        seconds = ttl(value) if callable(ttl) else ttl
        self.set(key, value, seconds)
        return value

    def remaining_ttl(self, key: str) -> float | None:
        """Seconds until the entry for ``key`` expires, or None if it is not fresh."""
        entry = self._fresh(key)
        if entry is None:
            return None
        return entry.expires_at - self._clock()
