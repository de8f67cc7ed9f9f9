"""CryptoCompare daily history strategy, used to reach back before Binance listed BTC."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

from ..errors import TerminalProviderError
from .base import BaseStrategy, Candle, HttpRequest, HttpResponse, Page, WalkDirection


ONE_DAY_S = 86_400
# First day with meaningful BTC/USD prices.
HISTORY_CUTOFF_MS = int(datetime(2010, 7, 17, tzinfo=timezone.utc).timestamp() * 1000)


class CryptoCompareHistodayStrategy(BaseStrategy):
    """
    Walk ``/data/v2/histoday`` backward with ``toTs``.

    Cursors are ms like every other timestamp strategy; the API takes seconds.
    Free tier allows about 120 requests/min, hence the larger pacing in config.
    """

    direction = WalkDirection.BACKWARD

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://min-api.cryptocompare.com",
        fsym: str = "BTC",
        tsym: str = "USD",
        limit: int = 2000,
        name: str = "cryptocompare",
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.fsym = fsym
        self.tsym = tsym
        self.limit = limit
        self.name = name
        self._clock = clock

    def initial_cursor(self, anchor: int | None = None) -> int | None:
        """Start the day before the earliest candle a higher-priority provider returned."""
        if anchor is not None:
            return anchor - ONE_DAY_S * 1000
        return int(self._clock() * 1000)

    def build_request(self, cursor: int | None) -> HttpRequest:
        if not self.api_key:
            raise TerminalProviderError("CRYPTOCOMPARE_API_KEY is not configured", provider_name=self.name)
        params: dict[str, Any] = {
            "fsym": self.fsym,
            "tsym": self.tsym,
            "limit": self.limit,
            "api_key": self.api_key,
        }
        if cursor is not None:
            params["toTs"] = cursor // 1000
        return HttpRequest(
            url=f"{self.base_url}/data/v2/histoday",
            params=params,
            headers={"Accept": "application/json"},
            secret_params=("api_key",),
        )

    def parse_response(self, response: HttpResponse) -> Page:
        payload = response.payload
        if not isinstance(payload, dict) or payload.get("Response") != "Success":
            message = payload.get("Message") if isinstance(payload, dict) else None
            raise TerminalProviderError(
                f"CryptoCompare returned an invalid structure: {message or 'unknown error'}",
                provider_name=self.name,
                status=response.status,
            )
        data = payload.get("Data")
        rows = data.get("Data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise TerminalProviderError(
                "CryptoCompare payload has no Data.Data list", provider_name=self.name, status=response.status
            )

        # Before listing the API pads the window with zero-priced rows.
        priced = [r for r in rows if isinstance(r, dict) and r.get("close")]
        if not priced:
            return Page(records=[], next_cursor=None, terminal_empty=True)

        try:
            oldest_ms = min(int(r["time"]) for r in priced) * 1000
        except (KeyError, TypeError, ValueError) as e:
            raise TerminalProviderError(
                f"CryptoCompare row without a usable time: {e!r}", provider_name=self.name, status=response.status
            ) from e
        next_cursor = oldest_ms - ONE_DAY_S * 1000
        if next_cursor < HISTORY_CUTOFF_MS or len(priced) < len(rows):
            next_cursor = None
        return Page(records=priced, next_cursor=next_cursor)

    def record_key(self, raw: Any) -> int:
        return int(raw["time"]) * 1000

    def to_candle(self, raw: Any) -> Candle:
        return Candle(
            ts=int(raw["time"]) * 1000,
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=float(raw.get("volumeto") or 0.0),
        )
