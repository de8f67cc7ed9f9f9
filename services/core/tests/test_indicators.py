"""Tests for indicator functions."""

import pytest

from topsignals.indicators import (
    btc_indicator_snapshot,
    ema,
    pi_cycle_snapshot,
    rsi,
    sma,
)


def test_sma_windows():
    assert sma([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])


def test_sma_not_enough_values():
    assert sma([1, 2], 3) == []


def test_sma_rejects_bad_period():
    with pytest.raises(ValueError):
        sma([1, 2, 3], 0)


def test_ema_seeded_with_sma():
    values = ema([1, 2, 3, 4, 5], 3)

    # Seed is SMA(1,2,3) = 2; k = 0.5
    assert values == pytest.approx([2.0, 3.0, 4.0])


def test_ema_of_constant_series_is_constant():
    assert ema([7.0] * 10, 4) == pytest.approx([7.0] * 7)


def test_rsi_length_and_bounds():
    closes = [44.34, 44.09, 44.15, 43.61, 44.33, 44.83, 45.10, 45.42, 45.84, 46.08, 45.89, 46.03, 45.61, 46.28, 46.28, 46.00]

    values = rsi(closes, 14)

    assert len(values) == 2
    assert values[0] == pytest.approx(70.46, abs=0.1)
    assert all(0 <= v <= 100 for v in values)


def test_rsi_only_gains_is_100():
    assert rsi(list(range(1, 20)), 14)[-1] == 100.0


def test_rsi_needs_period_plus_one():
    assert rsi(list(range(14)), 14) == []


class TestBtcIndicatorSnapshot:
    """Tests for btc_indicator_snapshot()."""

    def test_full_snapshot(self):
        monthly = [float(v) for v in range(1, 21)]
        weekly = [100.0] * 249 + [50.0]

        result = btc_indicator_snapshot(monthly, weekly)

        assert result["monthly_rsi"] == 100.0
        assert result["rsi_danger"] is True
        assert result["current_price"] == 50.0
        assert result["weekly_ema50"] is not None
        assert result["weekly_ema200"] is not None
        assert result["break_ema50"] is True
        assert result["break_ema200"] is True
        assert result["errors"] == {}

    def test_partial_snapshot_reports_errors(self):
        weekly = [100.0] * 60

        result = btc_indicator_snapshot([1.0, 2.0], weekly)

        assert result["monthly_rsi"] is None
        assert result["rsi_danger"] is False
        assert result["weekly_ema50"] == pytest.approx(100.0)
        assert result["weekly_ema200"] is None
        assert result["break_ema200"] is None
        assert set(result["errors"]) == {"rsi", "ema200"}

    def test_nothing_computable(self):
        with pytest.raises(ValueError):
            btc_indicator_snapshot([1.0], [1.0])


class TestPiCycleSnapshot:
    """Tests for pi_cycle_snapshot()."""

    def test_needs_350_closes(self):
        with pytest.raises(ValueError):
            pi_cycle_snapshot([1.0] * 349)

    def test_flat_market_does_not_cross(self):
        result = pi_cycle_snapshot([100.0] * 400, latest_ts=123)

        assert result["sma111"] == pytest.approx(100.0)
        assert result["sma350x2"] == pytest.approx(200.0)
        assert result["crossed"] is False
        assert result["distance_pct"] == pytest.approx(-50.0)
        assert result["time"] == 123

    def test_cross_on_latest_bar(self):
        # Flat then a spike: the fast average overtakes 2x the slow one on the last day
        closes = [100.0] * 399
        fast_prev = sum(closes[-111:]) / 111
        slow_prev = 2 * sum(closes[-350:]) / 350
        assert fast_prev <= slow_prev

        result = pi_cycle_snapshot(closes + [50_000.0])

        assert result["sma111"] > result["sma350x2"]
        assert result["crossed"] is True

    def test_exactly_350_closes_cannot_report_a_cross(self):
        result = pi_cycle_snapshot([100.0] * 349 + [1_000_000.0])

        assert result["sma111"] > result["sma350x2"]
        assert result["crossed"] is False
