"""Fallback-chain entries: how one strategy (or a merged group) acquires a value."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import (
    InsufficientDataError,
    ProviderError,
    TerminalProviderError,
    TransientProviderError,
)
from ..providers.base import FailureKind, FetchError, ProviderStrategy
from .collector import CollectCaps, Collection, PaginatedCollector
from .fetcher import BoundedRetryFetcher
from .merge import ProviderBatch, Series, normalize
from .types import MetricSource, ScalarReading


logger = logging.getLogger(__name__)


def failure_to_error(strategy: ProviderStrategy, error: FetchError) -> ProviderError:
    """Turn a fetch failure into the exception the orchestrator classifies."""
    kind = strategy.classify_failure(error)
    cls = TransientProviderError if kind == FailureKind.RETRYABLE else TerminalProviderError
    return cls(
        f"{strategy.name}: {error.kind.value} after {error.attempts} attempt(s)",
        provider_name=strategy.name,
        status=error.last_status,
        details={"message": error.message},
    )


@dataclass
class SeriesLeg:
    """One provider walk inside a merged series source."""
    strategy: ProviderStrategy
    boundary: int | None = None
    caps: CollectCaps | None = None
    collector: PaginatedCollector | None = None  # overrides the source collector, e.g. for slower pacing


class SeriesSource:
    """
    Collect one or more providers and merge them into a single Series.

    The first leg is the primary: if it yields nothing the whole source fails.
    Later legs only run while the merged data has not reached
    ``desired_earliest``; each is anchored at the earliest timestamp gathered
    so far, and its failures only leave the series limited.
    """

    def __init__(
        self,
        name: str,
        collector: PaginatedCollector,
        legs: list[SeriesLeg],
        desired_earliest: int | None = None,
    ):
        if not legs:
            raise ValueError("SeriesSource needs at least one leg")
        self.name = name
        self.collector = collector
        self.legs = legs
        self.desired_earliest = desired_earliest

    async def acquire(self) -> Series:
        batches: list[ProviderBatch] = []
        anchor: int | None = None

        for index, leg in enumerate(self.legs):
            primary = index == 0
            if not primary and self._reached_desired(anchor):
                logger.info(f"{self.name}: coverage reached, skipping {leg.strategy.name}")
                continue

            try:
                collector = leg.collector or self.collector
                collection = await collector.collect(
                    leg.strategy, boundary=leg.boundary, caps=leg.caps, anchor=anchor
                )
            except ProviderError as e:
                if primary:
                    raise
                logger.warning(f"{self.name}: supplement {leg.strategy.name} unavailable: {e.message}")
                continue

            if not collection.records:
                if primary:
                    raise self._collection_error(leg.strategy, collection)
                logger.warning(f"{self.name}: supplement {leg.strategy.name} returned no records")
                continue

            batches.append(ProviderBatch(leg.strategy.name, collection.records, leg.strategy.to_candle))
            earliest = min(leg.strategy.record_key(r) for r in collection.records)
            anchor = earliest if anchor is None else min(anchor, earliest)

        return normalize(batches, self.desired_earliest)

    def _reached_desired(self, anchor: int | None) -> bool:
        if self.desired_earliest is None:
            return True
        return anchor is not None and anchor <= self.desired_earliest

    @staticmethod
    def _collection_error(strategy: ProviderStrategy, collection: Collection) -> ProviderError:
        if collection.parse_error is not None:
            return collection.parse_error
        if collection.error is not None:
            return failure_to_error(strategy, collection.error)
        return InsufficientDataError(
            f"{strategy.name}: no records ({collection.reason.value})",
            provider_name=strategy.name,
            status=collection.http_status,
        )


class SingleFetchSource:
    """One request, one parsed page, one extracted value."""

    def __init__(
        self,
        name: str,
        fetcher: BoundedRetryFetcher,
        strategy: ProviderStrategy,
        extract: Callable[[list[Any]], ScalarReading],
    ):
        self.name = name
        self.fetcher = fetcher
        self.strategy = strategy
        self.extract = extract

    async def acquire(self) -> ScalarReading:
        request = self.strategy.build_request(self.strategy.initial_cursor())
        result = await self.fetcher.fetch(request, no_retry_statuses=self.strategy.no_retry_statuses)
        if not result.ok:
            raise failure_to_error(self.strategy, result.error)

        page = self.strategy.parse_response(result.response)
        if not page.records:
            raise InsufficientDataError(
                f"{self.strategy.name}: empty payload",
                provider_name=self.strategy.name,
                status=result.response.status,
            )
        return self.extract(page.records)


class DerivedSource:
    """Acquire named inputs in order, then compute a value from them."""

    def __init__(
        self,
        name: str,
        inputs: dict[str, MetricSource],
        derive: Callable[..., Any],
    ):
        self.name = name
        self.inputs = inputs
        self.derive = derive

    async def acquire(self) -> Any:
        values = {}
        for arg_name, source in self.inputs.items():
            values[arg_name] = await source.acquire()
        try:
            return self.derive(**values)
        except (ValueError, ZeroDivisionError) as e:
            raise InsufficientDataError(f"{self.name}: {e}", provider_name=self.name) from e
