"""SearchApi Apple App Store top charts."""

from __future__ import annotations

from typing import Any

from ..errors import TerminalProviderError
from .base import BaseStrategy, HttpRequest, HttpResponse, Page
from .rank import ChartEntry


class SearchApiTopChartsStrategy(BaseStrategy):
    """
    ``engine=apple_app_store_top_charts``; records are ``ChartEntry`` values.

    429 is not retried in place: the quota is per month, so the chain moves
    straight on to the next source.
    """

    no_retry_statuses = frozenset({400, 401, 403, 404, 429})

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://www.searchapi.io/api/v1/search",
        country: str = "us",
        category: str | None = None,
        chart: str = "top_free",
        name: str = "searchapi",
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.country = country
        self.category = category
        self.chart = chart
        self.name = name

    def build_request(self, cursor: int | None) -> HttpRequest:
        if not self.api_key:
            raise TerminalProviderError("SEARCHAPI_KEY is not configured", provider_name=self.name)
        params: dict[str, Any] = {
            "engine": "apple_app_store_top_charts",
            "store": self.country,
            "chart": self.chart,
            "api_key": self.api_key,
        }
        if self.category:
            params["category"] = self.category
        return HttpRequest(url=self.base_url, params=params, secret_params=("api_key",))

    def parse_response(self, response: HttpResponse) -> Page:
        payload = response.payload
        if not isinstance(payload, dict):
            raise TerminalProviderError(
                "SearchApi payload is not an object", provider_name=self.name, status=response.status
            )
        charts = payload.get("top_charts")
        if charts is None and payload.get("error"):
            raise TerminalProviderError(
                f"SearchApi error: {payload['error']}", provider_name=self.name, status=response.status
            )
        if not isinstance(charts, list):
            raise TerminalProviderError(
                "SearchApi payload has no top_charts list", provider_name=self.name, status=response.status
            )

        entries = []
        for index, item in enumerate(charts, start=1):
            if not isinstance(item, dict):
                continue
            entries.append(
                ChartEntry(
                    position=int(item.get("position") or index),
                    title=item.get("title") or "",
                    app_id=str(item["id"]) if item.get("id") is not None else None,
                    bundle_id=item.get("bundle_id"),
                )
            )
        return Page(records=entries, next_cursor=None, terminal_empty=not entries)

    def record_key(self, raw: ChartEntry) -> int:
        return raw.position
