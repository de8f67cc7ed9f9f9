"""Technical indicators over close prices (oldest first, newest last)."""

from __future__ import annotations

from typing import Any


RSI_PERIOD = 14
RSI_DANGER_LEVEL = 80.0
EMA_FAST = 50
EMA_SLOW = 200
PI_CYCLE_FAST = 111
PI_CYCLE_SLOW = 350


def sma(values: list[float], period: int) -> list[float]:
    """
    Simple moving average.

    Returns one value per full window, so ``len(values) - period + 1`` values
    (empty when there are fewer than ``period`` inputs).
    """
    if period <= 0:
        raise ValueError("period must be positive")
    if len(values) < period:
        return []

    out = []
    window = sum(values[:period])
    out.append(window / period)
    for i in range(period, len(values)):
        window += values[i] - values[i - period]
        out.append(window / period)
    return out


def ema(values: list[float], period: int) -> list[float]:
    """
    Exponential moving average seeded with the SMA of the first ``period`` values.

    Args:
        values: Close prices, oldest first
        period: Smoothing period

    Returns:
        ``len(values) - period + 1`` values, the first being the seed SMA
    """
    seed = sma(values[:period], period)
    if not seed:
        return []

    k = 2.0 / (period + 1)
    out = [seed[0]]
    for value in values[period:]:
        out.append((value - out[-1]) * k + out[-1])
    return out


def rsi(values: list[float], period: int = RSI_PERIOD) -> list[float]:
    """
    Relative Strength Index with Wilder smoothing.

    Needs at least ``period + 1`` values; returns ``len(values) - period`` values.
    """
    if len(values) <= period:
        return []

    changes = [values[i] - values[i - 1] for i in range(1, len(values))]
    gains = [max(c, 0.0) for c in changes]
    losses = [max(-c, 0.0) for c in changes]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    out = [_rsi_from_averages(avg_gain, avg_loss)]

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out.append(_rsi_from_averages(avg_gain, avg_loss))
    return out


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def btc_indicator_snapshot(monthly_closes: list[float], weekly_closes: list[float]) -> dict[str, Any]:
    """
    Monthly RSI plus weekly EMA-50/EMA-200 and whether price broke below them.

    Indicators that lack history are left as None with a note in ``errors``.
    Raises ValueError when neither the RSI nor the fast EMA can be computed.
    """
    result: dict[str, Any] = {
        "monthly_rsi": None,
        "rsi_danger": False,
        "weekly_ema50": None,
        "weekly_ema200": None,
        "current_price": weekly_closes[-1] if weekly_closes else None,
        "break_ema50": None,
        "break_ema200": None,
        "errors": {},
    }

    rsi_values = rsi(monthly_closes, RSI_PERIOD)
    if rsi_values:
        result["monthly_rsi"] = rsi_values[-1]
        result["rsi_danger"] = rsi_values[-1] >= RSI_DANGER_LEVEL
    else:
        result["errors"]["rsi"] = f"need {RSI_PERIOD + 1} monthly closes, have {len(monthly_closes)}"

    price = result["current_price"]
    for period, field in ((EMA_FAST, "ema50"), (EMA_SLOW, "ema200")):
        values = ema(weekly_closes, period)
        if not values:
            result["errors"][field] = f"need {period} weekly closes, have {len(weekly_closes)}"
            continue
        result[f"weekly_{field}"] = values[-1]
        result[f"break_{field}"] = price < values[-1]

    if result["monthly_rsi"] is None and result["weekly_ema50"] is None:
        raise ValueError("not enough history for any indicator")
    return result


def pi_cycle_snapshot(daily_closes: list[float], latest_ts: int | None = None) -> dict[str, Any]:
    """
    Pi-Cycle top: 111-day SMA against twice the 350-day SMA.

    ``crossed`` is true only when the fast average moved above the slow one
    on the latest bar.
    """
    if len(daily_closes) < PI_CYCLE_SLOW:
        raise ValueError(f"need {PI_CYCLE_SLOW} daily closes, have {len(daily_closes)}")

    fast = sma(daily_closes, PI_CYCLE_FAST)
    slow = [v * 2 for v in sma(daily_closes, PI_CYCLE_SLOW)]

    a, b = fast[-1], slow[-1]
    crossed = len(slow) >= 2 and a > b and fast[-2] <= slow[-2]
    return {
        "time": latest_ts,
        "sma111": a,
        "sma350x2": b,
        "crossed": crossed,
        "distance_pct": (a - b) / b * 100,
    }
