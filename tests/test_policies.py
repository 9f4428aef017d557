"""Tests for src/strategy/policies.py."""

from __future__ import annotations

import pandas as pd
import pytest

from src.engine.backtest import PricePoint, initial_state, simulate
from src.strategy.allocation import pe_params, target_ratio
from src.strategy.policies import (
    DollarCostAveragingPolicy,
    DriftThresholdPolicy,
    FixedIntervalRebalancePolicy,
    PeriodicReviewPolicy,
    QuoteUpdatePolicy,
    months_between,
    validate_weights,
    whole_months_between,
)


def _points(closes, start="2020-01-01", pe=None):
    dates = pd.date_range(start, periods=len(closes), freq="D")
    pes = pe if pe is not None else [None] * len(closes)
    return [
        PricePoint(date=d, close_price=c, valuation=v)
        for d, c, v in zip(dates, closes, pes)
    ]


def _split(ratio, capital=1_000_000.0, price=10.0, date="2020-01-01"):
    stock = capital * ratio
    return initial_state(date, cash=capital - stock, holdings={"X": (stock / price, price)})


class TestMonthsBetween:

    def test_whole_months(self):
        assert months_between("2020-01-01", "2020-07-01") == pytest.approx(6.0)

    def test_day_short_of_six_months(self):
        assert 5.9 < months_between("2020-01-01", "2020-06-30") < 6.0

    def test_short_month_end(self):
        # Feb 29 - 1 month clamps to Jan 29, two days short of Jan 31
        assert months_between("2020-01-31", "2020-02-29") == pytest.approx(1 - 2 / 31)

    def test_half_month(self):
        assert months_between("2021-02-01", "2021-02-15") == pytest.approx(14 / 31)

    def test_whole_months_ignores_days(self):
        assert whole_months_between(pd.Timestamp("2020-01-31"), pd.Timestamp("2020-04-01")) == 3


class TestValidateWeights:

    def test_valid(self):
        validate_weights({"A": 0.5, "B": 0.5})
        validate_weights({"A": 0.3})

    @pytest.mark.parametrize(
        "weights, message",
        [
            ({}, "At least one"),
            ({"A": -0.1}, "within"),
            ({"A": 1.5}, "within"),
            ({"A": 0.6, "B": 0.6}, "sum"),
        ],
    )
    def test_invalid(self, weights, message):
        with pytest.raises(ValueError, match=message):
            validate_weights(weights)


class TestPeriodicReviewPolicy:

    def _policy(self, signals, initial_ratio=0.5, **kwargs):
        params = pe_params(min_ratio=0.1, max_ratio=0.6, pe_low=11, pe_high=16, levels=6)
        return PeriodicReviewPolicy(
            "X",
            signals,
            ratio_fn=lambda v: target_ratio(v, params),
            initial_ratio=initial_ratio,
            review_interval_months=6,
            **kwargs,
        )

    def test_first_observation_only_seeds(self):
        points = _points([10.0], pe=[30.0])
        policy = self._policy(pd.Series({p.date: p.valuation for p in points}))
        simulate(points, _split(0.5), [policy])
        assert policy.trades == []
        assert policy.last_review == pd.Timestamp("2020-01-01")

    def test_sells_when_valuation_rises(self):
        pe = [12.0] * 180 + [14.0] * 180
        points = _points([10.0] * 360, pe=pe)
        policy = self._policy(pd.Series({p.date: p.valuation for p in points}))
        timeline = simulate(points, _split(0.5), [policy])

        assert len(policy.trades) == 1
        trade = policy.trades[0]
        assert trade.kind == "sell"
        assert trade.target == pytest.approx(0.3)
        assert trade.signal == 14.0
        assert trade.date == pd.Timestamp("2020-07-01")
        assert trade.value_before["X"] == pytest.approx(500_000.0)
        assert trade.value_after["X"] == pytest.approx(300_000.0)
        assert timeline[-1].weight("X") == pytest.approx(0.3)

    def test_non_leap_year_review_on_day_181(self):
        points = _points([10.0] * 360, start="2021-01-01", pe=[12.0] * 180 + [14.0] * 180)
        policy = self._policy(pd.Series({p.date: p.valuation for p in points}))
        timeline = simulate(points, _split(0.5), [policy])

        (trade,) = policy.trades
        assert trade.date == points[181].date == pd.Timestamp("2021-07-01")
        assert timeline[180].weight("X") == pytest.approx(0.5)
        assert timeline[181].weight("X") == pytest.approx(0.3)

    def test_missing_signal_skips_without_review(self):
        points = _points([10.0] * 200, pe=[12.0] + [None] * 199)
        policy = self._policy(pd.Series({points[0].date: 12.0}))
        simulate(points, _split(0.5), [policy])
        assert policy.trades == []
        assert policy.last_review == pd.Timestamp("2020-01-01")

    def test_unchanged_target_resets_review_clock(self):
        points = _points([10.0] * 200, pe=[12.0] * 200)
        policy = self._policy(pd.Series({p.date: p.valuation for p in points}))
        simulate(points, _split(0.5), [policy])
        assert policy.trades == []
        assert policy.last_review == pd.Timestamp("2020-07-01")

    def test_buy_when_cheaper(self):
        points = _points([10.0] * 200, pe=[12.0] * 100 + [9.0] * 100)
        policy = self._policy(pd.Series({p.date: p.valuation for p in points}))
        simulate(points, _split(0.5), [policy])
        assert [t.kind for t in policy.trades] == ["buy"]
        assert policy.current_ratio == pytest.approx(0.6)

    def test_invalid_interval(self):
        with pytest.raises(ValueError, match="review_interval_months"):
            PeriodicReviewPolicy("X", pd.Series(dtype=float), lambda v: 0.5, 0.5, 0)


class TestDriftThresholdPolicy:

    def test_rebalances_after_drift(self):
        # Stock triples: 50/50 drifts to 75/25
        points = _points([10.0, 10.0, 30.0, 30.0])
        policy = DriftThresholdPolicy("X", target_ratio=0.5, threshold=0.1)
        timeline = simulate(points, _split(0.5), [policy])

        assert [t.kind for t in policy.trades] == ["sell"]
        assert policy.trades[0].signal == pytest.approx(0.75)
        assert timeline[-1].weight("X") == pytest.approx(0.5)

    def test_small_drift_ignored(self):
        points = _points([10.0, 10.5, 11.0])
        policy = DriftThresholdPolicy("X", target_ratio=0.5, threshold=0.1)
        simulate(points, _split(0.5), [policy])
        assert policy.trades == []

    def test_first_observation_only_seeds(self):
        policy = DriftThresholdPolicy("X", target_ratio=0.5, threshold=0.1)
        simulate(_points([10.0]), _split(0.0), [policy])
        assert policy.trades == []

    @pytest.mark.parametrize("ratio, threshold", [(1.5, 0.1), (0.5, 0.0)])
    def test_invalid(self, ratio, threshold):
        with pytest.raises(ValueError):
            DriftThresholdPolicy("X", ratio, threshold)


class TestDollarCostAveragingPolicy:

    def test_one_contribution_per_month(self):
        points = _points([10.0] * 100)  # Jan 1 → Apr 9
        policy = DollarCostAveragingPolicy("X", monthly_budget=1_000.0, months=12)
        timeline = simulate(points, _split(0.0, capital=12_000.0), [policy])

        assert [t.date.month for t in policy.trades] == [1, 2, 3, 4]
        assert all(t.kind == "contribution" for t in policy.trades)
        assert timeline[-1].cash == pytest.approx(8_000.0)
        assert timeline[-1].positions[0].shares == pytest.approx(400.0)

    def test_stops_after_schedule(self):
        points = _points([10.0] * 150)
        policy = DollarCostAveragingPolicy("X", monthly_budget=1_000.0, months=2)
        simulate(points, _split(0.0, capital=12_000.0), [policy])
        assert policy.contributions == 2
        assert policy.finished

    def test_limited_by_cash(self):
        points = _points([10.0] * 70)
        policy = DollarCostAveragingPolicy("X", monthly_budget=1_000.0, months=12)
        timeline = simulate(points, _split(0.0, capital=1_500.0), [policy])
        assert [t.target for t in policy.trades] == pytest.approx([1_000.0, 500.0])
        assert timeline[-1].cash == pytest.approx(0.0)

    def test_cash_delta_recorded(self):
        points = _points([10.0])
        policy = DollarCostAveragingPolicy("X", monthly_budget=1_000.0, months=12)
        timeline = simulate(points, _split(0.0, capital=12_000.0), [policy])
        assert timeline[0].cash_delta == pytest.approx(-1_000.0)
        assert timeline[0].position_deltas["X"] == pytest.approx(100.0)


class TestFixedIntervalRebalancePolicy:

    def _series(self, n=120):
        dates = pd.date_range("2020-01-01", periods=n, freq="D")
        return [
            PricePoint(date=d, quotes={"A": 10.0 * (1 + i / 100), "B": 10.0})
            for i, d in enumerate(dates)
        ]

    def _state(self):
        return initial_state(
            "2020-01-01", cash=0.0, holdings={"A": (50_000.0, 10.0), "B": (50_000.0, 10.0)}
        )

    def test_rebalances_every_interval(self):
        policy = FixedIntervalRebalancePolicy({"A": 0.5, "B": 0.5}, interval_months=1)
        timeline = simulate(self._series(), self._state(), [policy])

        assert [t.date.month for t in policy.trades] == [2, 3, 4]
        assert all(t.kind == "rebalance" for t in policy.trades)
        after = policy.trades[-1].value_after
        assert after["A"] == pytest.approx(after["B"])
        rebalance_day = next(s for s in timeline if s.date == policy.trades[-1].date)
        assert rebalance_day.weight("A") == pytest.approx(0.5)

    def test_unweighted_instrument_sold_to_cash(self):
        policy = FixedIntervalRebalancePolicy({"A": 0.5}, interval_months=1)
        timeline = simulate(self._series(40), self._state(), [policy])
        feb = next(s for s in timeline if s.date == pd.Timestamp("2020-02-01"))
        assert feb.position("B").shares == 0.0
        assert feb.cash == pytest.approx(feb.total_value * 0.5)

    def test_invalid_weights(self):
        with pytest.raises(ValueError, match="sum"):
            FixedIntervalRebalancePolicy({"A": 0.8, "B": 0.4})


class TestQuoteUpdatePolicy:

    def test_marks_from_close_tables(self):
        dates = pd.date_range("2020-01-01", periods=3, freq="D")
        closes = {"A": pd.Series([10.0, 11.0, 12.0], index=dates)}
        days = [PricePoint(date=d) for d in dates]
        state = initial_state("2020-01-01", cash=0.0, holdings={"A": (10.0, 10.0)})

        timeline = simulate(days, state, [QuoteUpdatePolicy(closes)])
        assert [s.total_value for s in timeline] == pytest.approx([100.0, 110.0, 120.0])
