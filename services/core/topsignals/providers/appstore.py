"""Apple's public iTunes RSS top charts (no key, used when SearchApi is unavailable)."""

from __future__ import annotations

from typing import Any

from ..errors import TerminalProviderError
from .base import BaseStrategy, HttpRequest, HttpResponse, Page
from .rank import ChartEntry


FINANCE_GENRE_ID = 6015


def _label(entry: dict[str, Any], key: str) -> str | None:
    value = entry.get(key)
    if isinstance(value, dict):
        return value.get("label")
    return None


def _attribute(entry: dict[str, Any], key: str, attr: str) -> str | None:
    value = entry.get(key)
    if isinstance(value, dict):
        return (value.get("attributes") or {}).get(attr)
    return None


class AppStoreRssStrategy(BaseStrategy):
    """``/{country}/rss/topfreeapplications/limit=N[/genre=G]/json``."""

    def __init__(
        self,
        base_url: str = "https://itunes.apple.com",
        country: str = "us",
        genre_id: int | None = None,
        limit: int = 200,
        name: str = "appstore_rss",
    ):
        self.base_url = base_url.rstrip("/")
        self.country = country
        self.genre_id = genre_id
        self.limit = limit
        self.name = name

    def build_request(self, cursor: int | None) -> HttpRequest:
        path = f"/{self.country}/rss/topfreeapplications/limit={self.limit}"
        if self.genre_id is not None:
            path += f"/genre={self.genre_id}"
        return HttpRequest(url=f"{self.base_url}{path}/json", headers={"Accept": "application/json"})

    def parse_response(self, response: HttpResponse) -> Page:
        payload = response.payload
        feed = payload.get("feed") if isinstance(payload, dict) else None
        if not isinstance(feed, dict):
            raise TerminalProviderError(
                "App Store RSS payload has no feed", provider_name=self.name, status=response.status
            )
        raw_entries = feed.get("entry") or []
        # A one-item feed comes back as a bare object.
        if isinstance(raw_entries, dict):
            raw_entries = [raw_entries]

        entries = [
            ChartEntry(
                position=index,
                title=_label(item, "im:name") or "",
                app_id=_attribute(item, "id", "im:id"),
                bundle_id=_attribute(item, "id", "im:bundleId"),
            )
            for index, item in enumerate(raw_entries, start=1)
            if isinstance(item, dict)
        ]
        return Page(records=entries, next_cursor=None, terminal_empty=not entries)

    def record_key(self, raw: ChartEntry) -> int:
        return raw.position
