"""Paginated series collector built on the bounded retry fetcher."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from ..errors import TerminalProviderError
from ..providers.base import FetchError, HttpResponse, Page, ProviderStrategy, WalkDirection
from .fetcher import BoundedRetryFetcher


logger = logging.getLogger(__name__)


class TerminationReason(Enum):
    EXHAUSTED = "exhausted"  # provider signalled no more data
    EMPTY_PAGES = "empty_pages"  # two consecutive empty pages
    BOUNDARY = "boundary"  # cursor crossed the caller's boundary
    RECORD_CAP = "record_cap"
    PAGE_CAP = "page_cap"
    FETCH_FAILED = "fetch_failed"
    MALFORMED = "malformed"


@dataclass
class CollectCaps:
    max_pages: int = 20
    max_records: int = 10000


@dataclass
class Collection:
    """Raw records from one provider plus how the walk ended."""
    provider: str
    records: list[Any]
    reason: TerminationReason
    pages: int = 0
    requests: int = 0
    http_status: int | None = None
    error: FetchError | None = None
    parse_error: TerminalProviderError | None = None

    @property
    def failed(self) -> bool:
        return self.reason in (TerminationReason.FETCH_FAILED, TerminationReason.MALFORMED)


@dataclass
class _WalkState:
    records: list[Any] = field(default_factory=list)
    seen: set[int] = field(default_factory=set)
    empty_streak: int = 0
    pages: int = 0
    requests: int = 0


class PaginatedCollector:
    """
    Walks a provider's pages until a completion condition is met.

    Pages are fetched strictly in order since each cursor comes from the
    previous page. Records are de-duplicated by ``strategy.record_key`` within
    one walk only; merging across providers is the normalizer's job.
    """

    def __init__(
        self,
        fetcher: BoundedRetryFetcher,
        pacing_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    async def collect(
        self,
        strategy: ProviderStrategy,
        boundary: int | None = None,
        caps: CollectCaps | None = None,
        anchor: int | None = None,
    ) -> Collection:
        """
        Collect raw records from ``strategy``.

        Args:
            strategy: Provider strategy to walk
            boundary: Stop once the cursor crosses this value (ms timestamp or page index)
            caps: Page and record sanity caps
            anchor: Earliest ms timestamp already covered by higher-priority providers

        Returns:
            Collection with records in chronological (or page) order
        """
        caps = caps or CollectCaps()
        state = _WalkState()
        cursor = strategy.initial_cursor(anchor)
        last_status: int | None = None

        while True:
            request = strategy.build_request(cursor)
            result = await self.fetcher.fetch(request, no_retry_statuses=strategy.no_retry_statuses)
            state.requests += 1

            if not result.ok:
                logger.warning(
                    f"{strategy.name}: page {state.pages + 1} failed "
                    f"({result.error.kind.value}, status={result.error.last_status}); "
                    f"keeping {len(state.records)} records"
                )
                return self._finish(strategy, state, TerminationReason.FETCH_FAILED, last_status, error=result.error)

            last_status = result.response.status
            try:
                page, keys = self._parse(strategy, result.response)
            except TerminalProviderError as e:
                logger.warning(f"{strategy.name}: malformed page {state.pages + 1}: {e.message}")
                return self._finish(strategy, state, TerminationReason.MALFORMED, last_status, parse_error=e)

            state.pages += 1
            fresh = []
            for raw, key in zip(page.records, keys):
                if key in state.seen:
                    continue
                state.seen.add(key)
                fresh.append(raw)

            if strategy.direction == WalkDirection.BACKWARD:
                state.records = fresh + state.records
            else:
                state.records.extend(fresh)

            logger.info(
                f"{strategy.name}: page {state.pages} gave {len(fresh)} new records "
                f"(total {len(state.records)})"
            )

            if page.terminal_empty:
                return self._finish(strategy, state, TerminationReason.EXHAUSTED, last_status)

            state.empty_streak = state.empty_streak + 1 if not fresh else 0
            reason = self._termination(strategy, state, page.next_cursor, boundary, caps)
            if reason is not None:
                return self._finish(strategy, state, reason, last_status)

            cursor = page.next_cursor
            await self._sleep(self.pacing_seconds)

    @staticmethod
    def _parse(strategy: ProviderStrategy, response: HttpResponse) -> tuple[Page, list[int]]:
        """Parse a page and key its records; records that cannot be keyed or converted make it malformed."""
        try:
            page = strategy.parse_response(response)
            keys = []
            for raw in page.records:
                keys.append(strategy.record_key(raw))
                strategy.to_candle(raw)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TerminalProviderError(
                f"unexpected record shape: {e!r}", provider_name=strategy.name, status=response.status
            ) from e
        return page, keys

    @staticmethod
    def _termination(
        strategy: ProviderStrategy,
        state: _WalkState,
        next_cursor: int | None,
        boundary: int | None,
        caps: CollectCaps,
    ) -> TerminationReason | None:
        """First matching completion condition, in priority order."""
        if state.empty_streak >= 2:
            return TerminationReason.EMPTY_PAGES
        if next_cursor is None:
            return TerminationReason.EXHAUSTED
        if boundary is not None:
            if strategy.direction == WalkDirection.BACKWARD and next_cursor < boundary:
                return TerminationReason.BOUNDARY
            if strategy.direction == WalkDirection.FORWARD and next_cursor > boundary:
                return TerminationReason.BOUNDARY
        if len(state.records) > caps.max_records:
            return TerminationReason.RECORD_CAP
        if state.pages >= caps.max_pages:
            return TerminationReason.PAGE_CAP
        return None

    @staticmethod
    def _finish(
        strategy: ProviderStrategy,
        state: _WalkState,
        reason: TerminationReason,
        last_status: int | None,
        error: FetchError | None = None,
        parse_error: TerminalProviderError | None = None,
    ) -> Collection:
        logger.info(
            f"{strategy.name}: collection finished ({reason.value}) after "
            f"{state.pages} page(s), {state.requests} request(s), {len(state.records)} records"
        )
        return Collection(
            provider=strategy.name,
            records=state.records,
            reason=reason,
            pages=state.pages,
            requests=state.requests,
            http_status=error.last_status if error else last_status,
            error=error,
            parse_error=parse_error,
        )
