"""Canonical types for metric resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Protocol


class MetricKind(Enum):
    SCALAR = "scalar"  # a single number, e.g. an app-store rank
    SERIES = "series"  # an ordered candle series
    DERIVED = "derived"  # a dict computed from one or more series


class Polarity(Enum):
    """Which numeric move counts as "up" for a metric."""
    LOWER_IS_BETTER = "lower_is_better"  # ranks: 3 after 5 is up
    HIGHER_IS_BETTER = "higher_is_better"  # prices, oscillators

    def direction(self, previous: float | None, current: float | None) -> "Direction":
        if previous is None or current is None or previous == current:
            return Direction.NONE
        improved = current < previous if self == Polarity.LOWER_IS_BETTER else current > previous
        return Direction.UP if improved else Direction.DOWN


class Direction(Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass
class ScalarReading:
    """
    A scalar acquired from a provider.

    ``unavailable`` marks a legitimate absence (e.g. the app is below the
    top N of a chart that was fetched fine). That is data, not a failure.
    """
    value: float | None
    unavailable: bool = False
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderAttempt:
    provider_name: str
    started_at: int  # ms
    succeeded: bool
    elapsed_ms: int = 0
    http_status: int | None = None
    error_kind: str | None = None
    items_returned: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_name,
            "startedAt": self.started_at,
            "succeeded": self.succeeded,
            "elapsedMs": self.elapsed_ms,
            "httpStatus": self.http_status,
            "errorKind": self.error_kind,
            "items": self.items_returned,
        }


@dataclass
class DeltaResult:
    current: float | None
    previous: float | None
    direction: Direction
    delta: float | None = None


@dataclass
class MetricResult:
    """What callers of the pipeline observe for one metric."""
    key: str
    value: Any
    source: str
    fetched_at: int  # ms
    degraded: bool = False
    stale: bool = False
    previous: float | None = None
    direction: Direction = Direction.NONE
    delta: float | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    attempts: list[ProviderAttempt] = field(default_factory=list)

    def as_stale(self) -> "MetricResult":
        return replace(self, stale=True, degraded=True)

    def with_delta(self, delta: DeltaResult) -> "MetricResult":
        return replace(self, previous=delta.previous, direction=delta.direction, delta=delta.delta)


class MetricSource(Protocol):
    """One entry of a fallback chain."""

    name: str

    def acquire(self) -> Awaitable[Any]:
        """Return the acquired value or raise a ProviderError subclass."""
        ...


@dataclass
class MetricDefinition:
    """
    Static configuration of one metric.

    ``polarity`` must be given explicitly for delta-tracked metrics; it is
    never inferred from the metric name.
    """
    key: str
    kind: MetricKind
    chain: list[MetricSource]
    ttl_seconds: int
    degraded_ttl_seconds: int = 300
    polarity: Polarity | None = None
    track_delta: bool = False
    tracked_field: str | None = None  # key inside a DERIVED dict value to track
    static_default: Any = NO_DEFAULT
    min_records: int = 1
    required_recency_ms: int | None = None  # series must have a record this recent
    description: str = ""

    def __post_init__(self) -> None:
        if self.track_delta and self.polarity is None:
            raise ValueError(f"Metric '{self.key}' tracks deltas but has no explicit polarity")
        if self.track_delta and self.kind == MetricKind.SERIES:
            raise ValueError(f"Metric '{self.key}': series metrics cannot be delta tracked")
        if self.track_delta and self.kind == MetricKind.DERIVED and not self.tracked_field:
            raise ValueError(f"Metric '{self.key}': derived metrics need tracked_field to track deltas")

    @property
    def has_static_default(self) -> bool:
        return self.static_default is not NO_DEFAULT

    def ttl_for(self, result: MetricResult) -> float:
        return self.degraded_ttl_seconds if result.degraded else self.ttl_seconds
