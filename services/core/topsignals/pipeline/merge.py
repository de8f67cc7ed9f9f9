"""Series merge and normalization across providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from ..providers.base import Candle


logger = logging.getLogger(__name__)

DAY_MS = 86_400_000
WEEK_ANCHOR_DAY = 4  # 1970-01-05 was the first Monday after the epoch


@dataclass(frozen=True)
class ProviderBatch:
    """Raw records from one provider, in chain priority order."""
    tag: str
    records: Sequence[Any]
    to_candle: Callable[[Any], Candle]


@dataclass(frozen=True)
class Series:
    """Ordered candles with strictly increasing, unique timestamps."""
    records: tuple[Candle, ...]
    source_tags: frozenset[str]
    is_limited: bool
    range_start: int | None
    range_end: int | None

    def __len__(self) -> int:
        return len(self.records)

    def closes(self) -> list[float]:
        return [c.close for c in self.records]

    def to_dict(self) -> dict[str, Any]:
        return {
            "prices": [c.to_dict() for c in self.records],
            "count": len(self.records),
            "sources": sorted(self.source_tags),
            "isLimitedData": self.is_limited,
            "range": {
                "start": _iso(self.range_start),
                "end": _iso(self.range_end),
            } if self.records else None,
        }


def _iso(ts_ms: int | None) -> str | None:
    if ts_ms is None:
        return None
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def empty_series() -> Series:
    return Series(records=(), source_tags=frozenset(), is_limited=True, range_start=None, range_end=None)


def normalize(batches: Sequence[ProviderBatch], desired_earliest: int | None = None) -> Series:
    """
    Merge provider batches into one ascending series.

    When two providers supply the same timestamp the batch listed first
    (higher priority in the chain) wins, whatever order the calls finished in.
    Within one batch the first occurrence of a timestamp wins.

    Args:
        batches: Provider batches in priority order
        desired_earliest: ms timestamp the merge should reach; if the earliest
            record is later than this the series is marked limited

    Returns:
        Series with coverage metadata
    """
    merged: dict[int, tuple[Candle, str]] = {}

    for batch in batches:
        if not batch.records:
            logger.info(f"Skipping empty batch from {batch.tag}")
            continue
        for raw in batch.records:
            candle = batch.to_candle(raw)
            if candle.ts not in merged:
                merged[candle.ts] = (candle, batch.tag)

    if not merged:
        return empty_series()

    ordered = [merged[ts] for ts in sorted(merged)]
    records = tuple(candle for candle, _ in ordered)
    tags = frozenset(tag for _, tag in ordered)
    range_start = records[0].ts
    range_end = records[-1].ts
    is_limited = desired_earliest is not None and range_start > desired_earliest

    return Series(
        records=records,
        source_tags=tags,
        is_limited=is_limited,
        range_start=range_start,
        range_end=range_end,
    )


def _month_bucket(ts: int) -> int:
    dt = datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    start = datetime(dt.year, dt.month, 1, tzinfo=timezone.utc)
    return int(start.timestamp() * 1000)


def _week_bucket(ts: int) -> int:
    day = ts // DAY_MS
    monday = ((day - WEEK_ANCHOR_DAY) // 7) * 7 + WEEK_ANCHOR_DAY
    return monday * DAY_MS


_BUCKETS = {
    "1w": _week_bucket,
    "1M": _month_bucket,
}


def resample(series: Series, interval: str) -> Series:
    """
    Aggregate a daily series into weekly ("1w", Monday-aligned) or monthly ("1M") candles.

    The bucket close is the last daily close in the bucket.
    """
    if interval not in _BUCKETS:
        raise ValueError(f"Unsupported resample interval '{interval}'. Use 1w or 1M.")
    bucket_of = _BUCKETS[interval]

    aggregated: dict[int, dict[str, Any]] = {}
    for candle in series.records:
        bucket_start = bucket_of(candle.ts)
        high = candle.high if candle.high is not None else candle.close
        low = candle.low if candle.low is not None else candle.close

        if bucket_start not in aggregated:
            aggregated[bucket_start] = {
                "open": candle.open if candle.open is not None else candle.close,
                "high": high,
                "low": low,
                "close": candle.close,
                "volume": candle.volume,
            }
        else:
            agg = aggregated[bucket_start]
            agg["high"] = max(agg["high"], high)
            agg["low"] = min(agg["low"], low)
            agg["close"] = candle.close
            if candle.volume is not None:
                agg["volume"] = (agg["volume"] or 0.0) + candle.volume

    records = tuple(
        Candle(ts=ts, **values) for ts, values in sorted(aggregated.items())
    )
    return Series(
        records=records,
        source_tags=series.source_tags,
        is_limited=series.is_limited,
        range_start=records[0].ts if records else None,
        range_end=records[-1].ts if records else None,
    )
