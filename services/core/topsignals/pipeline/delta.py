"""Delta tracking over the snapshot store: sticky previous value and direction."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..errors import PersistenceError
from ..storage.sqlite import SQLiteSnapshotStore
from .types import DeltaResult, Direction, Polarity


logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


def _signed_delta(previous: float | None, current: float | None) -> float | None:
    if previous is None or current is None:
        return None
    return current - previous


class DeltaTracker:
    """
    Record scalar observations and report the previous distinct value.

    History only stores transitions: an unchanged value writes nothing and
    reports the most recent different value with direction ``none``. The
    read-then-write sequence is serialized per metric in-process; across
    processes the store's compare-and-swap insert keeps a transition from
    being written twice.
    """

    def __init__(self, store: SQLiteSnapshotStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    async def record_and_diff(
        self,
        metric_name: str,
        new_value: float | None,
        polarity: Polarity,
        source: str = "live",
    ) -> DeltaResult:
        lock = self._locks.setdefault(metric_name, asyncio.Lock())
        async with lock:
            try:
                return await self._record_and_diff(metric_name, new_value, polarity, source)
            except PersistenceError as e:
                # Trend tracking is best-effort; the value itself is still served.
                logger.warning(f"Delta tracking unavailable for {metric_name}: {e.message}", exc_info=True)
                return DeltaResult(current=new_value, previous=None, direction=Direction.NONE)

    async def _record_and_diff(
        self,
        metric_name: str,
        new_value: float | None,
        polarity: Polarity,
        source: str,
    ) -> DeltaResult:
        for _ in range(MAX_WRITE_ATTEMPTS):
            latest = await self.store.get_latest(metric_name)

            if latest is None:
                if await self.store.insert(metric_name, new_value, self._now_ms(), source, expected_last_id=None):
                    logger.info(f"{metric_name}: first observation {new_value}")
                    return DeltaResult(current=new_value, previous=None, direction=Direction.NONE)
                continue

            if latest.value == new_value:
                different = await self.store.get_latest_different(metric_name, new_value)
                previous = different.value if different else None
                # Nothing moved, so no delta; previous stays sticky for display.
                return DeltaResult(current=new_value, previous=previous, direction=Direction.NONE)

            previous = latest.value
            if await self.store.insert(metric_name, new_value, self._now_ms(), source, expected_last_id=latest.id):
                direction = polarity.direction(previous, new_value)
                logger.info(f"{metric_name}: {previous} -> {new_value} ({direction.value})")
                return DeltaResult(
                    current=new_value,
                    previous=previous,
                    direction=direction,
                    delta=_signed_delta(previous, new_value),
                )

            logger.info(f"{metric_name}: concurrent writer recorded a transition first, re-reading")

        logger.warning(f"{metric_name}: gave up recording after {MAX_WRITE_ATTEMPTS} contended attempts")
        return DeltaResult(current=new_value, previous=None, direction=Direction.NONE)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
