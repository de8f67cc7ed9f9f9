"""CoinGecko strategies: single-page fallbacks for history and indicators."""

from __future__ import annotations

from typing import Any

from ..errors import TerminalProviderError
from .base import BaseStrategy, Candle, HttpRequest, HttpResponse, Page


class _CoinGeckoStrategy(BaseStrategy):
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.coingecko.com/api/v3",
        coin_id: str = "bitcoin",
        vs_currency: str = "usd",
        days: int | str = 365,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.coin_id = coin_id
        self.vs_currency = vs_currency
        self.days = days

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers


class CoinGeckoOHLCStrategy(_CoinGeckoStrategy):
    """
    ``/coins/{id}/ohlc``: ``[[ms, open, high, low, close], ...]``.

    CoinGecko picks the candle width from ``days`` (4-day candles for 365),
    so a series built from it is always coarser than the primary history.
    """

    name = "coingecko_ohlc"

    def build_request(self, cursor: int | None) -> HttpRequest:
        return HttpRequest(
            url=f"{self.base_url}/coins/{self.coin_id}/ohlc",
            params={"vs_currency": self.vs_currency, "days": self.days},
            headers=self._headers(),
        )

    def parse_response(self, response: HttpResponse) -> Page:
        rows = response.payload
        if not isinstance(rows, list):
            raise TerminalProviderError(
                "CoinGecko OHLC payload is not a list", provider_name=self.name, status=response.status
            )
        valid = [r for r in rows if isinstance(r, list) and len(r) >= 5 and r[4] is not None]
        return Page(records=valid, next_cursor=None, terminal_empty=not valid)

    def record_key(self, raw: Any) -> int:
        return int(raw[0])

    def to_candle(self, raw: Any) -> Candle:
        return Candle(
            ts=int(raw[0]),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
        )


class CoinGeckoMarketChartStrategy(_CoinGeckoStrategy):
    """``/coins/{id}/market_chart`` daily closes: ``{"prices": [[ms, price], ...]}``."""

    name = "coingecko_chart"

    def build_request(self, cursor: int | None) -> HttpRequest:
        return HttpRequest(
            url=f"{self.base_url}/coins/{self.coin_id}/market_chart",
            params={"vs_currency": self.vs_currency, "days": self.days, "interval": "daily"},
            headers=self._headers(),
        )

    def parse_response(self, response: HttpResponse) -> Page:
        payload = response.payload
        prices = payload.get("prices") if isinstance(payload, dict) else None
        if not isinstance(prices, list):
            raise TerminalProviderError(
                "CoinGecko market chart has no prices list", provider_name=self.name, status=response.status
            )
        valid = [p for p in prices if isinstance(p, list) and len(p) >= 2 and p[1] is not None]
        return Page(records=valid, next_cursor=None, terminal_empty=not valid)

    def record_key(self, raw: Any) -> int:
        return int(raw[0])

    def to_candle(self, raw: Any) -> Candle:
        return Candle(ts=int(raw[0]), close=float(raw[1]))
