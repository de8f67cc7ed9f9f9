"""Metric service: cache in front, orchestrator behind, delta tracking after."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

from .cache import ResultCache
from .delta import DeltaTracker
from .orchestrator import FallbackOrchestrator
from .types import MetricDefinition, MetricKind, MetricResult


logger = logging.getLogger(__name__)


class UnknownMetricError(KeyError):
    """Raised for a metric key that is not registered."""
    pass


class MetricService:
    """Entry point used by the HTTP layer and scripts."""

    def __init__(
        self,
        metrics: dict[str, MetricDefinition],
        orchestrator: FallbackOrchestrator,
        cache: ResultCache,
        tracker: DeltaTracker | None = None,
    ):
        self.metrics = metrics
        self.orchestrator = orchestrator
        self.cache = cache
        self.tracker = tracker

    def definition(self, key: str) -> MetricDefinition:
        try:
            return self.metrics[key]
        except KeyError:
            raise UnknownMetricError(key) from None

    async def get(self, key: str) -> MetricResult:
        """Resolve ``key`` through the result cache. May raise ExhaustionError."""
        metric = self.definition(key)
        return await self.cache.get_or_compute(
            key,
            metric.ttl_for,
            lambda: self._compute(metric),
        )

    async def get_many(self, keys: list[str]) -> dict[str, MetricResult | BaseException]:
        """Resolve independent metrics concurrently; failures come back as exceptions."""
        results = await asyncio.gather(*(self.get(k) for k in keys), return_exceptions=True)
        return dict(zip(keys, results))

    async def _compute(self, metric: MetricDefinition) -> MetricResult:
        result = await self.orchestrator.resolve(metric)

        # Only live values become observations; stale and static ones keep whatever
        # trend information they already carry.
        if not metric.track_delta or self.tracker is None or result.stale or result.source == "static":
            return result

        value = self._tracked_value(metric, result)
        delta = await self.tracker.record_and_diff(metric.key, value, metric.polarity, source=result.source)
        return result.with_delta(delta)

    @staticmethod
    def _tracked_value(metric: MetricDefinition, result: MetricResult) -> Any:
        if metric.kind == MetricKind.DERIVED:
            return result.value.get(metric.tracked_field)
        return result.value

    def max_age(self, key: str, result: MetricResult) -> int:
        """Seconds ``result`` may still be cached downstream."""
        entry = self.cache.peek(key)
        remaining = self.cache.remaining_ttl(key)
        if entry is not None and entry.value is result and remaining is not None:
            return max(0, math.ceil(remaining))
        # Stale copies of an expired entry are degraded, so this is the degraded TTL.
        return int(self.definition(key).ttl_for(result))
