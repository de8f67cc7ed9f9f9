"""Tests for the paginated series collector."""

import pytest

from topsignals.errors import TerminalProviderError
from topsignals.pipeline.collector import CollectCaps, PaginatedCollector, TerminationReason
from topsignals.pipeline.fetcher import FetchResult
from topsignals.providers.base import (
    BaseStrategy,
    Candle,
    FetchError,
    FetchErrorKind,
    HttpRequest,
    HttpResponse,
    Page,
    WalkDirection,
)


class ScriptedStrategy(BaseStrategy):
    """Serves pre-built pages of integer timestamps; the response payload is the page index."""

    name = "scripted"

    def __init__(self, pages, direction=WalkDirection.BACKWARD, malformed_at=None):
        self.pages = pages
        self.direction = direction
        self.malformed_at = malformed_at
        self.cursors = []

    def initial_cursor(self, anchor=None):
        if anchor is not None:
            return anchor
        return 0 if self.direction == WalkDirection.FORWARD else 1_000_000

    def build_request(self, cursor):
        self.cursors.append(cursor)
        return HttpRequest(url="https://example.test/page", params={"cursor": cursor})

    def parse_response(self, response):
        index = response.payload
        if index == self.malformed_at:
            raise TerminalProviderError("bad page", provider_name=self.name)
        records = self.pages[index] if index < len(self.pages) else []
        if not records:
            return Page(records=[], next_cursor=None, terminal_empty=True)
        if self.direction == WalkDirection.BACKWARD:
            return Page(records=list(records), next_cursor=min(records) - 1)
        return Page(records=list(records), next_cursor=max(records) + 1)

    def record_key(self, raw):
        return raw

    def to_candle(self, raw):
        return Candle(ts=raw, close=float(raw))


class PageFetcher:
    """Returns page indexes in request order; ``failures`` maps request index to FetchError."""

    def __init__(self, failures=None):
        self.calls = 0
        self.failures = failures or {}

    async def fetch(self, request, no_retry_statuses=frozenset()):
        index = self.calls
        self.calls += 1
        if index in self.failures:
            return FetchResult(error=self.failures[index], attempts=3)
        return FetchResult(response=HttpResponse(200, index), attempts=1)


def backward_pages(n, size=100, newest=10_000):
    """``n`` contiguous pages walking back from ``newest``; each page ascending."""
    pages = []
    top = newest
    for _ in range(n):
        pages.append(list(range(top - size, top)))
        top -= size
    return pages


def make_collector(fetcher, pacing=0.25):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return PaginatedCollector(fetcher, pacing_seconds=pacing, sleep=fake_sleep), sleeps


class TestPaginatedCollector:
    """Tests for PaginatedCollector."""

    @pytest.mark.asyncio
    async def test_n_pages_then_empty_page(self):
        """N pages then one empty page: N pages of records, N+1 requests."""
        fetcher = PageFetcher()
        collector, sleeps = make_collector(fetcher)
        strategy = ScriptedStrategy(backward_pages(3))

        collection = await collector.collect(strategy)

        assert collection.reason == TerminationReason.EXHAUSTED
        assert len(collection.records) == 300
        assert fetcher.calls == 4
        assert collection.requests == 4
        assert not collection.failed

    @pytest.mark.asyncio
    async def test_backward_walk_prepends_into_chronological_order(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        strategy = ScriptedStrategy(backward_pages(3))

        collection = await collector.collect(strategy)

        assert collection.records == sorted(collection.records)
        assert collection.records[0] == 9_700
        assert collection.records[-1] == 9_999
        # Each cursor comes from the oldest record of the previous page
        assert strategy.cursors == [1_000_000, 9_899, 9_799, 9_699]

    @pytest.mark.asyncio
    async def test_forward_walk_appends(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        strategy = ScriptedStrategy([[1, 2], [3, 4], [5]], direction=WalkDirection.FORWARD)

        collection = await collector.collect(strategy)

        assert collection.records == [1, 2, 3, 4, 5]
        assert strategy.cursors == [0, 3, 5, 6]

    @pytest.mark.asyncio
    async def test_pacing_between_pages(self):
        fetcher = PageFetcher()
        collector, sleeps = make_collector(fetcher, pacing=0.25)

        await collector.collect(ScriptedStrategy(backward_pages(3)))

        # No pause after the final (terminal) page
        assert sleeps == [0.25, 0.25, 0.25]

    @pytest.mark.asyncio
    async def test_two_pages_without_new_records_stop(self):
        """A provider that keeps returning the same page is treated as exhausted."""
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        strategy = ScriptedStrategy([[5, 6], [5, 6], [5, 6], [5, 6], [5, 6]])

        collection = await collector.collect(strategy)

        assert collection.reason == TerminationReason.EMPTY_PAGES
        assert collection.records == [5, 6]
        assert fetcher.calls == 3

    @pytest.mark.asyncio
    async def test_boundary_stops_backward_walk(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(ScriptedStrategy(backward_pages(5)), boundary=9_850)

        assert collection.reason == TerminationReason.BOUNDARY
        assert fetcher.calls == 2
        assert len(collection.records) == 200

    @pytest.mark.asyncio
    async def test_boundary_stops_forward_walk(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        strategy = ScriptedStrategy([[1, 2], [3, 4], [5, 6]], direction=WalkDirection.FORWARD)

        collection = await collector.collect(strategy, boundary=4)

        assert collection.reason == TerminationReason.BOUNDARY
        assert collection.records == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_record_cap(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(
            ScriptedStrategy(backward_pages(5)), caps=CollectCaps(max_pages=10, max_records=150)
        )

        assert collection.reason == TerminationReason.RECORD_CAP
        assert len(collection.records) == 200

    @pytest.mark.asyncio
    async def test_page_cap(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(
            ScriptedStrategy(backward_pages(5)), caps=CollectCaps(max_pages=2, max_records=10_000)
        )

        assert collection.reason == TerminationReason.PAGE_CAP
        assert collection.pages == 2
        assert len(collection.records) == 200

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_partial_records(self):
        error = FetchError(FetchErrorKind.HTTP_ERROR, last_status=503, attempts=3)
        fetcher = PageFetcher(failures={1: error})
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(ScriptedStrategy(backward_pages(3)))

        assert collection.reason == TerminationReason.FETCH_FAILED
        assert collection.failed
        assert collection.error is error
        assert collection.http_status == 503
        assert len(collection.records) == 100

    @pytest.mark.asyncio
    async def test_malformed_page(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(ScriptedStrategy(backward_pages(3), malformed_at=0))

        assert collection.reason == TerminationReason.MALFORMED
        assert collection.records == []
        assert isinstance(collection.parse_error, TerminalProviderError)

    @pytest.mark.asyncio
    async def test_unconvertible_record_is_malformed(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)

        collection = await collector.collect(ScriptedStrategy([[10, 11, 12], ["oops"]]))

        assert collection.reason == TerminationReason.MALFORMED
        assert collection.records == [10, 11, 12]
        assert isinstance(collection.parse_error, TerminalProviderError)

    @pytest.mark.asyncio
    async def test_duplicates_within_walk_are_dropped(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        # Second page overlaps the first by one record
        strategy = ScriptedStrategy([[10, 11, 12], [8, 9, 10]])

        collection = await collector.collect(strategy)

        assert collection.records == [8, 9, 10, 11, 12]

    @pytest.mark.asyncio
    async def test_anchor_sets_initial_cursor(self):
        fetcher = PageFetcher()
        collector, _ = make_collector(fetcher)
        strategy = ScriptedStrategy(backward_pages(1))

        await collector.collect(strategy, anchor=12_345)

        assert strategy.cursors[0] == 12_345
