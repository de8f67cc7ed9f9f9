"""
Metric API endpoints.

Every response carries a Cache-Control max-age equal to the remaining lifetime
of the cached result, so downstream caches expire together with ours.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from ..errors import ExhaustionError
from ..metrics import FINANCE_RANK, OVERALL_RANK
from ..pipeline.merge import Series
from ..pipeline.service import MetricService, UnknownMetricError
from ..pipeline.types import MetricResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["metrics"])

UNAVAILABLE_DETAIL = "metric temporarily unavailable"

# Service instance (set by main.py)
_service: MetricService | None = None


def set_service(service: MetricService | None) -> None:
    """Set the service instance."""
    global _service
    _service = service


def get_service() -> MetricService:
    """Get the service instance."""
    if _service is None:
        raise RuntimeError("Metric service not initialized")
    return _service


class MetricResponse(BaseModel):
    key: str
    value: Any = Field(None, description="Scalar, series payload or derived object")
    source: str
    fetched_at: int = Field(..., description="Unix ms when the value was acquired")
    stale: bool = False
    degraded: bool = False
    previous: float | None = None
    direction: str = "none"
    delta: float | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    attempts: list[dict[str, Any]] = Field(default_factory=list)


class CoinbaseRankResponse(BaseModel):
    financeRank: int | None = None
    overallRank: int | None = None
    prevFinanceRank: int | None = None
    prevOverallRank: int | None = None
    deltaFinance: int | None = None
    deltaOverall: int | None = None
    directionFinance: str = "none"
    directionOverall: str = "none"
    source: str | None = None
    stale: bool = False
    degraded: bool = False


def to_response(result: MetricResult) -> MetricResponse:
    value = result.value.to_dict() if isinstance(result.value, Series) else result.value
    return MetricResponse(
        key=result.key,
        value=value,
        source=result.source,
        fetched_at=result.fetched_at,
        stale=result.stale,
        degraded=result.degraded,
        previous=result.previous,
        direction=result.direction.value,
        delta=result.delta,
        detail=result.detail,
        attempts=[a.to_dict() for a in result.attempts],
    )


def _as_int(value: float | None) -> int | None:
    return int(value) if value is not None else None


@router.get("/metrics")
async def list_metrics(service: MetricService = Depends(get_service)) -> dict[str, Any]:
    """
    List registered metrics.

    Example:
        {
            "metrics": [
                {"key": "btc_history", "kind": "series", "ttl_seconds": 86400,
                 "polarity": null, "providers": ["binance+cryptocompare", "coingecko_ohlc"]}
            ]
        }
    """
    return {
        "metrics": [
            {
                "key": m.key,
                "kind": m.kind.value,
                "ttl_seconds": m.ttl_seconds,
                "polarity": m.polarity.value if m.polarity else None,
                "tracked": m.track_delta,
                "providers": [s.name for s in m.chain],
                "description": m.description,
            }
            for m in service.metrics.values()
        ]
    }


@router.get("/metrics/{key}", response_model=MetricResponse)
async def get_metric(
    key: str,
    response: Response,
    service: MetricService = Depends(get_service),
) -> MetricResponse:
    try:
        result = await service.get(key)
    except UnknownMetricError:
        raise HTTPException(status_code=404, detail=f"Unknown metric '{key}'")
    except ExhaustionError as e:
        logger.error(f"Serving 503 for {key}: {e.message}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL)

    response.headers["Cache-Control"] = f"public, max-age={service.max_age(key, result)}"
    return to_response(result)


@router.get("/coinbase-rank", response_model=CoinbaseRankResponse)
async def get_coinbase_rank(
    response: Response,
    service: MetricService = Depends(get_service),
) -> CoinbaseRankResponse:
    """Finance and overall ranks resolved concurrently, with sticky previous ranks."""
    results = await service.get_many([FINANCE_RANK, OVERALL_RANK])
    finance, overall = results[FINANCE_RANK], results[OVERALL_RANK]

    resolved = [r for r in (finance, overall) if isinstance(r, MetricResult)]
    failed = [r for r in (finance, overall) if not isinstance(r, MetricResult)]
    for error in failed:
        if not isinstance(error, ExhaustionError):
            raise error
        logger.error(f"Coinbase rank unavailable: {error.message}")
    if not resolved:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL)

    def attr_of(result: Any, attr: str) -> Any:
        return getattr(result, attr) if isinstance(result, MetricResult) else None

    sources = list(dict.fromkeys(r.source for r in resolved))
    max_age = min(service.max_age(r.key, r) for r in resolved)
    response.headers["Cache-Control"] = f"public, max-age={max_age}"

    return CoinbaseRankResponse(
        financeRank=_as_int(attr_of(finance, "value")),
        overallRank=_as_int(attr_of(overall, "value")),
        prevFinanceRank=_as_int(attr_of(finance, "previous")),
        prevOverallRank=_as_int(attr_of(overall, "previous")),
        deltaFinance=_as_int(attr_of(finance, "delta")),
        deltaOverall=_as_int(attr_of(overall, "delta")),
        directionFinance=finance.direction.value if isinstance(finance, MetricResult) else "none",
        directionOverall=overall.direction.value if isinstance(overall, MetricResult) else "none",
        source=",".join(sources),
        stale=any(r.stale for r in resolved),
        degraded=bool(failed) or any(r.degraded for r in resolved),
    )
