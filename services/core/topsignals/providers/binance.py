"""Binance klines strategy (public data mirror, no geo-blocking)."""

from __future__ import annotations

import time
from typing import Any, Callable

from ..errors import TerminalProviderError
from .base import BaseStrategy, Candle, HttpRequest, HttpResponse, Page, WalkDirection


class BinanceKlinesStrategy(BaseStrategy):
    """
    Walk ``/api/v3/klines`` backward in time using ``endTime``.

    Rate limits:
    - 1200 request weight per minute
    - Each /klines request has weight=1 up to 100 candles, 2 up to 1000
    - Max 1000 candles per request
    """

    direction = WalkDirection.BACKWARD

    def __init__(
        self,
        base_url: str = "https://data-api.binance.vision",
        symbol: str = "BTCUSDT",
        interval: str = "1d",
        limit: int = 1000,
        name: str = "binance",
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.symbol = symbol.upper()
        self.interval = interval
        self.limit = min(limit, 1000)
        self.name = name
        self._clock = clock

    def initial_cursor(self, anchor: int | None = None) -> int | None:
        return int(self._clock() * 1000)

    def build_request(self, cursor: int | None) -> HttpRequest:
        params: dict[str, Any] = {
            "symbol": self.symbol,
            "interval": self.interval,
            "limit": self.limit,
        }
        if cursor is not None:
            params["endTime"] = cursor
        return HttpRequest(url=f"{self.base_url}/api/v3/klines", params=params)

    def parse_response(self, response: HttpResponse) -> Page:
        data = response.payload
        if not isinstance(data, list):
            raise TerminalProviderError(
                f"Unexpected klines payload type {type(data).__name__}",
                provider_name=self.name,
                status=response.status,
            )
        if not data:
            # Nothing before endTime: the walk reached the listing date.
            return Page(records=[], next_cursor=None, terminal_empty=True)

        for kline in data:
            if not isinstance(kline, list) or len(kline) < 6:
                raise TerminalProviderError(
                    "Malformed kline row", provider_name=self.name, status=response.status
                )

        oldest_open = min(int(k[0]) for k in data)
        # A short page means there is nothing older.
        next_cursor = oldest_open - 1 if len(data) >= self.limit else None
        return Page(records=data, next_cursor=next_cursor)

    def record_key(self, raw: Any) -> int:
        return int(raw[0])

    def to_candle(self, raw: Any) -> Candle:
        """
        Convert a Binance kline to a Candle.

        Binance kline format:
        [
          0: Open time (ms),
          1: Open,
          2: High,
          3: Low,
          4: Close,
          5: Volume,
          6: Close time (ms),
          7: Quote asset volume,
          8: Number of trades,
          9: Taker buy base asset volume,
          10: Taker buy quote asset volume,
          11: Ignore
        ]
        """
        return Candle(
            ts=int(raw[0]),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
            volume=float(raw[5]),
        )
