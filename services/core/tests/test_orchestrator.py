"""
Tests for the fallback chain orchestrator.

Sources are in-memory fakes; no network is involved.
"""

import asyncio
import time

import pytest

from topsignals.errors import (
    ExhaustionError,
    InsufficientDataError,
    TerminalProviderError,
    TransientProviderError,
)
from topsignals.pipeline.cache import ResultCache
from topsignals.pipeline.merge import empty_series, normalize, ProviderBatch
from topsignals.pipeline.orchestrator import FallbackOrchestrator
from topsignals.pipeline.types import (
    MetricDefinition,
    MetricKind,
    MetricResult,
    Polarity,
    ScalarReading,
)
from topsignals.providers.base import Candle


class FakeSource:
    def __init__(self, name, value=None, error=None, delay=0.0):
        self.name = name
        self.value = value
        self.error = error
        self.delay = delay
        self.calls = 0

    async def acquire(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


def rank_metric(chain, **kwargs):
    kwargs.setdefault("static_default", None)
    return MetricDefinition(
        key="rank",
        kind=MetricKind.SCALAR,
        chain=chain,
        ttl_seconds=300,
        polarity=Polarity.LOWER_IS_BETTER,
        track_delta=True,
        **kwargs,
    )


def series_of(*timestamps):
    return normalize([ProviderBatch("fake", [Candle(ts=t, close=1.0) for t in timestamps], lambda c: c)])


def transient(name="p"):
    return TransientProviderError("rate limited", provider_name=name, status=429)


def terminal(name="p"):
    return TerminalProviderError("missing key", provider_name=name)


class TestResolve:
    """Chain traversal."""

    @pytest.mark.asyncio
    async def test_first_success_stops_chain(self):
        first = FakeSource("a", ScalarReading(value=3))
        second = FakeSource("b", ScalarReading(value=9))

        result = await FallbackOrchestrator().resolve(rank_metric([first, second]))

        assert result.value == 3
        assert result.source == "a"
        assert result.stale is False
        assert result.degraded is False
        assert second.calls == 0
        assert len(result.attempts) == 1
        assert result.attempts[0].succeeded

    @pytest.mark.asyncio
    async def test_retryable_failure_advances(self):
        first = FakeSource("a", error=transient("a"))
        second = FakeSource("b", ScalarReading(value=7))

        result = await FallbackOrchestrator().resolve(rank_metric([first, second]))

        assert result.value == 7
        assert result.source == "b"
        assert [a.succeeded for a in result.attempts] == [False, True]
        assert result.attempts[0].http_status == 429
        assert result.attempts[0].error_kind == "TransientProviderError"

    @pytest.mark.asyncio
    async def test_terminal_failure_advances(self):
        first = FakeSource("a", error=terminal("a"))
        second = FakeSource("b", ScalarReading(value=7))

        result = await FallbackOrchestrator().resolve(rank_metric([first, second]))

        assert result.source == "b"

    @pytest.mark.asyncio
    async def test_null_scalar_is_not_success(self):
        first = FakeSource("a", ScalarReading(value=None))
        second = FakeSource("b", ScalarReading(value=12))

        result = await FallbackOrchestrator().resolve(rank_metric([first, second]))

        assert result.source == "b"
        assert result.attempts[0].error_kind == "InsufficientDataError"

    @pytest.mark.asyncio
    async def test_unranked_reading_is_a_value(self):
        """An app below the top N is data, not a failure."""
        reading = ScalarReading(value=None, unavailable=True, detail={"unrankedBeyond": 200})
        first = FakeSource("a", reading)
        second = FakeSource("b", ScalarReading(value=12))

        result = await FallbackOrchestrator().resolve(rank_metric([first, second]))

        assert result.source == "a"
        assert result.value is None
        assert result.detail["unavailable"] is True
        assert result.detail["unrankedBeyond"] == 200
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        slow = FakeSource("slow", ScalarReading(value=1), delay=1.0)
        fast = FakeSource("fast", ScalarReading(value=2))
        orchestrator = FallbackOrchestrator(source_timeout_seconds=0.05)

        result = await orchestrator.resolve(rank_metric([slow, fast]))

        assert result.source == "fast"
        assert result.attempts[0].error_kind == "timeout"

    @pytest.mark.asyncio
    async def test_unexpected_exception_does_not_escape(self):
        broken = FakeSource("broken", error=RuntimeError("boom"))
        ok = FakeSource("ok", ScalarReading(value=4))

        result = await FallbackOrchestrator().resolve(rank_metric([broken, ok]))

        assert result.source == "ok"
        assert result.attempts[0].error_kind == "RuntimeError"

    @pytest.mark.asyncio
    async def test_empty_series_advances(self):
        now_ms = int(time.time() * 1000)
        metric = MetricDefinition(
            key="history",
            kind=MetricKind.SERIES,
            chain=[FakeSource("a", empty_series()), FakeSource("b", series_of(now_ms - 1000, now_ms))],
            ttl_seconds=60,
        )

        result = await FallbackOrchestrator().resolve(metric)

        assert result.source == "b"
        assert result.attempts[1].items_returned == 2
        assert result.detail["sources"] == ["fake"]

    @pytest.mark.asyncio
    async def test_series_must_reach_required_recency(self):
        now_ms = int(time.time() * 1000)
        old = series_of(now_ms - 30 * 86_400_000)
        fresh = series_of(now_ms - 86_400_000)
        metric = MetricDefinition(
            key="history",
            kind=MetricKind.SERIES,
            chain=[FakeSource("old", old), FakeSource("fresh", fresh)],
            ttl_seconds=60,
            required_recency_ms=7 * 86_400_000,
        )

        result = await FallbackOrchestrator().resolve(metric)

        assert result.source == "fresh"

    @pytest.mark.asyncio
    async def test_derived_none_advances(self):
        metric = MetricDefinition(
            key="derived",
            kind=MetricKind.DERIVED,
            chain=[FakeSource("a", None), FakeSource("b", {"x": 1})],
            ttl_seconds=60,
        )

        result = await FallbackOrchestrator().resolve(metric)

        assert result.value == {"x": 1}


class TestExhaustion:
    """What happens when every source fails."""

    @pytest.mark.asyncio
    async def test_serves_cached_value_as_stale(self):
        cache = ResultCache()
        cached = MetricResult(key="rank", value=5, source="a", fetched_at=1000)
        cache.set("rank", cached, ttl=0)
        metric = rank_metric([FakeSource("a", error=terminal()), FakeSource("b", error=transient())])

        result = await FallbackOrchestrator(cache=cache).resolve(metric)

        assert result.value == 5
        assert result.source == "a"
        assert result.stale is True
        assert result.degraded is True
        assert result.fetched_at == 1000
        assert len(result.attempts) == 2
        # The cached entry itself is left untouched
        assert cached.stale is False

    @pytest.mark.asyncio
    async def test_static_default_when_nothing_cached(self):
        metric = rank_metric([FakeSource("a", error=terminal())])

        result = await FallbackOrchestrator(cache=ResultCache()).resolve(metric)

        assert result.value is None
        assert result.source == "static"
        assert result.degraded is True
        assert result.stale is False

    @pytest.mark.asyncio
    async def test_static_result_is_not_reused_as_known_good(self):
        cache = ResultCache()
        cache.set("rank", MetricResult(key="rank", value=None, source="static", fetched_at=1, degraded=True), ttl=0)
        metric = rank_metric([FakeSource("a", error=terminal())], static_default=-1)

        result = await FallbackOrchestrator(cache=cache).resolve(metric)

        assert result.value == -1
        assert result.stale is False

    @pytest.mark.asyncio
    async def test_raises_without_cache_or_default(self):
        metric = MetricDefinition(
            key="history",
            kind=MetricKind.SERIES,
            chain=[FakeSource("a", error=InsufficientDataError("empty", provider_name="a"))],
            ttl_seconds=60,
        )

        with pytest.raises(ExhaustionError) as excinfo:
            await FallbackOrchestrator(cache=ResultCache()).resolve(metric)

        assert excinfo.value.metric_key == "history"
        assert excinfo.value.details["attempts"][0]["provider"] == "a"


class TestMetricDefinition:
    """Configuration checks."""

    def test_tracked_metric_needs_polarity(self):
        with pytest.raises(ValueError):
            MetricDefinition(key="x", kind=MetricKind.SCALAR, chain=[], ttl_seconds=1, track_delta=True)

    def test_tracked_derived_metric_needs_field(self):
        with pytest.raises(ValueError):
            MetricDefinition(
                key="x",
                kind=MetricKind.DERIVED,
                chain=[],
                ttl_seconds=1,
                polarity=Polarity.HIGHER_IS_BETTER,
                track_delta=True,
            )

    def test_degraded_results_use_degraded_ttl(self):
        metric = rank_metric([], degraded_ttl_seconds=30)

        assert metric.ttl_for(MetricResult(key="rank", value=1, source="a", fetched_at=0)) == 300
        assert metric.ttl_for(MetricResult(key="rank", value=1, source="a", fetched_at=0, degraded=True)) == 30
