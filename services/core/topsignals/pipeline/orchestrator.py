"""Fallback chain orchestrator."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from ..errors import (
    ExhaustionError,
    InsufficientDataError,
    ProviderError,
    TransientProviderError,
)
from ..providers.base import FailureKind
from .cache import ResultCache
from .merge import Series
from .types import (
    MetricDefinition,
    MetricKind,
    MetricResult,
    MetricSource,
    ProviderAttempt,
    ScalarReading,
)


logger = logging.getLogger(__name__)


class FallbackOrchestrator:
    """
    Resolve a metric by trying its chain of sources in order.

    Each source is classified as success, retryable failure or terminal
    failure; either failure advances to the next source. When every source
    fails the last known-good cache entry is served stale, then the metric's
    static default. Provider exceptions never leave ``resolve``; the only
    error raised is ``ExhaustionError`` when neither fallback exists.
    """

    def __init__(
        self,
        cache: ResultCache | None = None,
        source_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.source_timeout_seconds = source_timeout_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def resolve(self, metric: MetricDefinition) -> MetricResult:
        attempts: list[ProviderAttempt] = []

        for source in metric.chain:
            started = self._now_ms()
            outcome, value, error = await self._try_source(metric, source)
            attempt = ProviderAttempt(
                provider_name=source.name,
                started_at=started,
                succeeded=outcome is None,
                elapsed_ms=self._now_ms() - started,
                http_status=getattr(error, "status", None),
                error_kind=self._error_kind(error),
                items_returned=self._count_items(value) if outcome is None else 0,
            )
            attempts.append(attempt)

            if outcome is None:
                logger.info(
                    f"{metric.key}: resolved by {source.name} "
                    f"({attempt.items_returned} items, {attempt.elapsed_ms}ms)"
                )
                return self._build_result(metric, source.name, value, attempts)

            logger.warning(
                f"{metric.key}: {source.name} failed ({outcome.value}, "
                f"{attempt.error_kind}, status={attempt.http_status}); advancing chain"
            )

        return self._exhausted(metric, attempts)

    async def _try_source(
        self, metric: MetricDefinition, source: MetricSource
    ) -> tuple[FailureKind | None, Any, Exception | None]:
        try:
            value = await asyncio.wait_for(source.acquire(), timeout=self.source_timeout_seconds)
            self._validate(metric, source.name, value)
        except asyncio.TimeoutError as e:
            return FailureKind.RETRYABLE, None, e
        except TransientProviderError as e:
            return FailureKind.RETRYABLE, None, e
        except ProviderError as e:
            return FailureKind.TERMINAL, None, e
        except Exception as e:
            logger.error(f"{metric.key}: unexpected error in {source.name}: {e}", exc_info=True)
            return FailureKind.TERMINAL, None, e
        return None, value, None

    def _validate(self, metric: MetricDefinition, source_name: str, value: Any) -> None:
        """Raise InsufficientDataError unless ``value`` is minimally valid for the metric kind."""
        if metric.kind == MetricKind.SCALAR:
            if not isinstance(value, ScalarReading):
                raise InsufficientDataError(f"expected a scalar reading, got {type(value).__name__}", source_name)
            if value.unavailable:
                return
            if isinstance(value.value, bool) or not isinstance(value.value, (int, float)):
                raise InsufficientDataError("scalar value is missing", source_name)
            return

        if metric.kind == MetricKind.SERIES:
            if not isinstance(value, Series):
                raise InsufficientDataError(f"expected a series, got {type(value).__name__}", source_name)
            if len(value) < metric.min_records:
                raise InsufficientDataError(
                    f"series has {len(value)} records, need {metric.min_records}", source_name
                )
            if metric.required_recency_ms is not None:
                since = self._now_ms() - metric.required_recency_ms
                if value.range_end is None or value.range_end < since:
                    raise InsufficientDataError("series does not reach the required date range", source_name)
            return

        if value is None:
            raise InsufficientDataError("derived value is empty", source_name)

    def _build_result(
        self,
        metric: MetricDefinition,
        source_name: str,
        value: Any,
        attempts: list[ProviderAttempt],
    ) -> MetricResult:
        detail: dict[str, Any] = {}
        if isinstance(value, ScalarReading):
            detail.update(value.detail)
            if value.unavailable:
                detail["unavailable"] = True
            value = value.value
        elif isinstance(value, Series):
            detail["sources"] = sorted(value.source_tags)
            detail["isLimitedData"] = value.is_limited

        return MetricResult(
            key=metric.key,
            value=value,
            source=source_name,
            fetched_at=self._now_ms(),
            detail=detail,
            attempts=attempts,
        )

    def _exhausted(self, metric: MetricDefinition, attempts: list[ProviderAttempt]) -> MetricResult:
        entry = self.cache.peek(metric.key) if self.cache else None
        if entry is not None and entry.value.source != "static":
            logger.warning(f"{metric.key}: all sources failed, serving last known-good value as stale")
            stale = entry.value.as_stale()
            stale.attempts = attempts
            return stale

        if metric.has_static_default:
            logger.warning(f"{metric.key}: all sources failed and nothing cached, serving static default")
            return MetricResult(
                key=metric.key,
                value=metric.static_default,
                source="static",
                fetched_at=self._now_ms(),
                degraded=True,
                attempts=attempts,
            )

        logger.error(f"{metric.key}: all sources failed with no cached or static fallback")
        raise ExhaustionError(metric.key, details={"attempts": [a.to_dict() for a in attempts]})

    @staticmethod
    def _error_kind(error: Exception | None) -> str | None:
        if error is None:
            return None
        if isinstance(error, asyncio.TimeoutError):
            return "timeout"
        return type(error).__name__

    @staticmethod
    def _count_items(value: Any) -> int:
        if isinstance(value, Series):
            return len(value)
        if isinstance(value, dict):
            return len(value)
        return 1
