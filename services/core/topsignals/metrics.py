"""Metric registry: which providers back each metric, in which order."""

from __future__ import annotations

import aiohttp

from .config import Settings
from .indicators import btc_indicator_snapshot, pi_cycle_snapshot
from .pipeline.cache import ResultCache
from .pipeline.collector import CollectCaps, PaginatedCollector
from .pipeline.delta import DeltaTracker
from .pipeline.fetcher import BoundedRetryFetcher
from .pipeline.merge import Series, resample
from .pipeline.orchestrator import FallbackOrchestrator
from .pipeline.service import MetricService
from .pipeline.sources import DerivedSource, SeriesLeg, SeriesSource, SingleFetchSource
from .pipeline.types import MetricDefinition, MetricKind, MetricResult, Polarity
from .providers.appstore import FINANCE_GENRE_ID, AppStoreRssStrategy
from .providers.binance import BinanceKlinesStrategy
from .providers.coingecko import CoinGeckoMarketChartStrategy, CoinGeckoOHLCStrategy
from .providers.cryptocompare import HISTORY_CUTOFF_MS, CryptoCompareHistodayStrategy
from .providers.rank import AppMatcher
from .providers.searchapi import SearchApiTopChartsStrategy
from .storage.sqlite import SQLiteSnapshotStore


FINANCE_RANK = "coinbase_finance_rank"
OVERALL_RANK = "coinbase_overall_rank"
BTC_HISTORY = "btc_history"
BTC_INDICATORS = "btc_indicators"
PI_CYCLE = "pi_cycle"

HISTORY_RECENCY_MS = 7 * 86_400_000
CRYPTOCOMPARE_PACING_SECONDS = 0.5
SINGLE_PAGE = CollectCaps(max_pages=1)


def _indicators_from_klines(monthly: Series, weekly: Series) -> dict:
    return btc_indicator_snapshot(monthly.closes(), weekly.closes())


def _indicators_from_daily(daily: Series) -> dict:
    return btc_indicator_snapshot(resample(daily, "1M").closes(), resample(daily, "1w").closes())


def _pi_cycle(daily: Series) -> dict:
    return pi_cycle_snapshot(daily.closes(), latest_ts=daily.range_end)


def _rank_metric(
    settings: Settings,
    fetcher: BoundedRetryFetcher,
    key: str,
    label: str,
    category: str | None,
    genre_id: int | None,
    rss_limit: int,
    description: str,
) -> MetricDefinition:
    matcher = AppMatcher(
        app_id=settings.app_store_id,
        bundle_id=settings.app_bundle_id,
        name_hint=settings.app_name_hint,
    )
    searchapi = SearchApiTopChartsStrategy(
        api_key=settings.searchapi_key,
        base_url=settings.searchapi_base_url,
        country=settings.app_store_country,
        category=category,
        name=f"searchapi_{label}",
    )
    rss = AppStoreRssStrategy(
        base_url=settings.appstore_base_url,
        country=settings.app_store_country,
        genre_id=genre_id,
        limit=rss_limit,
        name=f"appstore_rss_{label}",
    )
    return MetricDefinition(
        key=key,
        kind=MetricKind.SCALAR,
        chain=[
            SingleFetchSource(searchapi.name, fetcher, searchapi, matcher.reading),
            SingleFetchSource(rss.name, fetcher, rss, matcher.reading),
        ],
        ttl_seconds=settings.rank_ttl_seconds,
        degraded_ttl_seconds=settings.degraded_ttl_seconds,
        polarity=Polarity.LOWER_IS_BETTER,
        track_delta=True,
        static_default=None,
        description=description,
    )


def build_metrics(
    settings: Settings,
    fetcher: BoundedRetryFetcher,
    collector: PaginatedCollector,
) -> dict[str, MetricDefinition]:
    """Build every metric definition from settings."""
    slow_collector = PaginatedCollector(fetcher, pacing_seconds=CRYPTOCOMPARE_PACING_SECONDS)
    history_caps = CollectCaps(max_pages=settings.history_max_pages, max_records=settings.history_max_records)

    def binance(interval: str, limit: int, name: str) -> BinanceKlinesStrategy:
        return BinanceKlinesStrategy(
            base_url=settings.binance_base_url, interval=interval, limit=limit, name=name
        )

    def coingecko_chart(days: int | str) -> CoinGeckoMarketChartStrategy:
        return CoinGeckoMarketChartStrategy(
            api_key=settings.coingecko_api_key, base_url=settings.coingecko_base_url, days=days
        )

    def single(name: str, strategy) -> SeriesSource:
        return SeriesSource(name, collector, [SeriesLeg(strategy, caps=SINGLE_PAGE)])

    metrics = [
        _rank_metric(
            settings, fetcher, FINANCE_RANK, "finance",
            category="finance_apps", genre_id=FINANCE_GENRE_ID, rss_limit=200,
            description="Coinbase position in the US App Store top free finance chart",
        ),
        _rank_metric(
            settings, fetcher, OVERALL_RANK, "overall",
            category=None, genre_id=None, rss_limit=100,
            description="Coinbase position in the US App Store top free overall chart",
        ),
        MetricDefinition(
            key=BTC_HISTORY,
            kind=MetricKind.SERIES,
            chain=[
                SeriesSource(
                    "binance+cryptocompare",
                    collector,
                    [
                        SeriesLeg(binance("1d", 1000, "binance"), boundary=settings.get_binance_start_ms(), caps=history_caps),
                        SeriesLeg(
                            CryptoCompareHistodayStrategy(
                                api_key=settings.cryptocompare_api_key,
                                base_url=settings.cryptocompare_base_url,
                            ),
                            boundary=HISTORY_CUTOFF_MS,
                            caps=CollectCaps(
                                max_pages=settings.cryptocompare_max_pages,
                                max_records=settings.history_max_records,
                            ),
                            collector=slow_collector,
                        ),
                    ],
                    desired_earliest=settings.get_desired_earliest_ms(),
                ),
                SeriesSource(
                    "coingecko_ohlc",
                    collector,
                    [
                        SeriesLeg(
                            CoinGeckoOHLCStrategy(
                                api_key=settings.coingecko_api_key,
                                base_url=settings.coingecko_base_url,
                                days=365,
                            ),
                            caps=SINGLE_PAGE,
                        )
                    ],
                    desired_earliest=settings.get_desired_earliest_ms(),
                ),
            ],
            ttl_seconds=settings.history_ttl_seconds,
            degraded_ttl_seconds=settings.degraded_ttl_seconds,
            required_recency_ms=HISTORY_RECENCY_MS,
            description="Daily BTC/USD candles, as far back as the providers reach",
        ),
        MetricDefinition(
            key=BTC_INDICATORS,
            kind=MetricKind.DERIVED,
            chain=[
                DerivedSource(
                    "binance_klines",
                    {
                        "monthly": single("binance_1M", binance("1M", 20, "binance_1M")),
                        "weekly": single("binance_1w", binance("1w", 250, "binance_1w")),
                    },
                    _indicators_from_klines,
                ),
                DerivedSource(
                    "coingecko_chart",
                    {"daily": single("coingecko_chart", coingecko_chart("max"))},
                    _indicators_from_daily,
                ),
            ],
            ttl_seconds=settings.indicators_ttl_seconds,
            degraded_ttl_seconds=settings.degraded_ttl_seconds,
            polarity=Polarity.HIGHER_IS_BETTER,
            track_delta=True,
            tracked_field="monthly_rsi",
            description="Monthly RSI(14) and weekly EMA-50/EMA-200 for BTC",
        ),
        MetricDefinition(
            key=PI_CYCLE,
            kind=MetricKind.DERIVED,
            chain=[
                DerivedSource(
                    "coingecko_chart",
                    {"daily": single("coingecko_chart", coingecko_chart(365))},
                    _pi_cycle,
                ),
                DerivedSource(
                    "binance_daily",
                    {"daily": single("binance_daily", binance("1d", 400, "binance_daily"))},
                    _pi_cycle,
                ),
            ],
            ttl_seconds=settings.pi_cycle_ttl_seconds,
            degraded_ttl_seconds=settings.degraded_ttl_seconds,
            description="Pi-Cycle top indicator: 111-day SMA against 2x 350-day SMA",
        ),
    ]
    return {m.key: m for m in metrics}


def build_service(
    settings: Settings,
    session: aiohttp.ClientSession | None = None,
    store: SQLiteSnapshotStore | None = None,
) -> MetricService:
    """Wire fetcher, collector, cache, orchestrator and delta tracker together."""
    fetcher = BoundedRetryFetcher(
        session=session,
        max_retries=settings.fetch_max_retries,
        base_backoff_ms=settings.fetch_backoff_ms,
        deadline_seconds=settings.fetch_deadline_seconds,
        request_timeout_seconds=settings.request_timeout_seconds,
    )
    collector = PaginatedCollector(fetcher, pacing_seconds=settings.page_pacing_seconds)
    cache = ResultCache(
        stale_grace_seconds=settings.stale_grace_seconds,
        mark_stale=MetricResult.as_stale,
    )
    orchestrator = FallbackOrchestrator(cache=cache, source_timeout_seconds=settings.source_timeout_seconds)
    tracker = DeltaTracker(store) if store is not None else None
    return MetricService(
        metrics=build_metrics(settings, fetcher, collector),
        orchestrator=orchestrator,
        cache=cache,
        tracker=tracker,
    )
