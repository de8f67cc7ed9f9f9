"""App chart entries and matching the tracked app to a rank."""

from __future__ import annotations

from dataclasses import dataclass

from ..pipeline.types import ScalarReading


@dataclass(frozen=True)
class ChartEntry:
    position: int  # 1-based
    title: str = ""
    app_id: str | None = None
    bundle_id: str | None = None


@dataclass
class AppMatcher:
    """
    Find one app in a top chart.

    Ids are tried across the whole chart before the name hint, so a sibling
    app whose title merely contains the hint cannot shadow the real one.
    """
    app_id: str | None = None
    bundle_id: str | None = None
    name_hint: str | None = None

    def _matches_id(self, entry: ChartEntry) -> bool:
        if self.app_id and entry.app_id and str(entry.app_id) == str(self.app_id):
            return True
        if self.bundle_id and entry.bundle_id and entry.bundle_id.lower() == self.bundle_id.lower():
            return True
        return False

    def _matches_name(self, entry: ChartEntry) -> bool:
        return bool(self.name_hint) and self.name_hint.lower() in (entry.title or "").lower()

    def find(self, entries: list[ChartEntry]) -> ChartEntry | None:
        for entry in entries:
            if self._matches_id(entry):
                return entry
        for entry in entries:
            if self._matches_name(entry):
                return entry
        return None

    def reading(self, entries: list[ChartEntry]) -> ScalarReading:
        """Rank of the app in ``entries``; absent from a fetched chart means unranked."""
        entry = self.find(entries)
        if entry is None:
            return ScalarReading(
                value=None,
                unavailable=True,
                detail={"chartSize": len(entries), "unrankedBeyond": len(entries)},
            )
        return ScalarReading(
            value=entry.position,
            detail={"chartSize": len(entries), "title": entry.title},
        )
