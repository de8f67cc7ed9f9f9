"""Base types and protocols for market data providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..errors import InsufficientDataError, TerminalProviderError


@dataclass(frozen=True)
class Candle:
    """Canonical time-bucketed price record. Identity key is ``ts``."""
    ts: int  # Unix timestamp in milliseconds (start of the bucket)
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.ts,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class HttpRequest:
    """Descriptor for a single provider HTTP call."""
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    secret_params: tuple[str, ...] = ()  # redacted in logs

    def redacted(self) -> str:
        shown = {
            k: ("***" if k in self.secret_params else v)
            for k, v in self.params.items()
        }
        return f"{self.method} {self.url} {shown}"


@dataclass
class HttpResponse:
    status: int
    payload: Any


@dataclass
class Page:
    """One parsed provider page."""
    records: list[Any]
    next_cursor: int | None
    terminal_empty: bool = False


class FetchErrorKind(Enum):
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    NETWORK = "network"
    DECODE = "decode"


@dataclass
class FetchError:
    """Why a bounded fetch gave up. A value, not an exception."""
    kind: FetchErrorKind
    last_status: int | None = None
    attempts: int = 0
    message: str = ""


class FailureKind(Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class WalkDirection(Enum):
    BACKWARD = "backward"  # cursor is an end-of-window timestamp moving into the past
    FORWARD = "forward"  # cursor is a page index or a start timestamp moving ahead


class ProviderStrategy(Protocol):
    """
    Declarative description of one provider endpoint.

    The fetcher and collector drive the network; a strategy only knows how to
    build requests, parse responses and classify failures.
    """

    name: str
    direction: WalkDirection
    no_retry_statuses: frozenset[int]

    def initial_cursor(self, anchor: int | None = None) -> int | None:
        """First cursor. ``anchor`` is the earliest ms timestamp already collected by higher-priority providers."""
        ...

    def build_request(self, cursor: int | None) -> HttpRequest:
        ...

    def parse_response(self, response: HttpResponse) -> Page:
        """Raise TerminalProviderError on an unexpected schema."""
        ...

    def classify_failure(self, failure: Any) -> FailureKind:
        ...

    def record_key(self, raw: Any) -> int:
        ...

    def to_candle(self, raw: Any) -> Candle:
        ...


class BaseStrategy:
    """Defaults shared by the concrete strategies."""

    name = "base"
    direction = WalkDirection.FORWARD
    no_retry_statuses: frozenset[int] = frozenset({400, 401, 403, 404})

    def initial_cursor(self, anchor: int | None = None) -> int | None:
        return None

    def classify_failure(self, failure: Any) -> FailureKind:
        """
        Map a fetch failure or parse exception to a chain decision.

        Timeouts, transport errors, 429 and 5xx are retryable. Other 4xx,
        undecodable bodies and schema errors are terminal for this strategy.
        """
        if isinstance(failure, FetchError):
            if failure.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.NETWORK):
                return FailureKind.RETRYABLE
            if failure.kind == FetchErrorKind.DECODE:
                return FailureKind.TERMINAL
            status = failure.last_status or 0
            if status == 429 or status >= 500:
                return FailureKind.RETRYABLE
            return FailureKind.TERMINAL
        if isinstance(failure, (TerminalProviderError, InsufficientDataError)):
            return FailureKind.TERMINAL
        return FailureKind.RETRYABLE

    def record_key(self, raw: Any) -> int:
        return self.to_candle(raw).ts

    def to_candle(self, raw: Any) -> Candle:
        raise NotImplementedError
