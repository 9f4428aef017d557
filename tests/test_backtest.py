"""Tests for src/engine/backtest.py."""

from __future__ import annotations

import pandas as pd
import pytest

from src.data.rates import RateSource
from src.engine.backtest import (
    AssetPosition,
    NetWorthState,
    PricePoint,
    TradeRecord,
    check_invariant,
    initial_state,
    simulate,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _points(closes, start="2020-01-01", freq="D"):
    dates = pd.date_range(start, periods=len(closes), freq=freq)
    return [PricePoint(date=d, close_price=c) for d, c in zip(dates, closes)]


def _half_stock_state(date="2020-01-01", capital=1_000.0, price=10.0):
    return initial_state(date, cash=capital / 2, holdings={"X": (capital / 2 / price, price)})


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestPricePoint:

    def test_quote_uses_close_without_quotes(self):
        p = PricePoint(date=pd.Timestamp("2020-01-01"), close_price=5.0)
        assert p.quote_for("anything") == 5.0

    def test_quote_uses_quotes_map(self):
        p = PricePoint(date=pd.Timestamp("2020-01-01"), close_price=5.0, quotes={"A": 7.0})
        assert p.quote_for("A") == 7.0
        assert p.quote_for("B") is None

    def test_non_positive_quote_is_unusable(self):
        p = PricePoint(date=pd.Timestamp("2020-01-01"), close_price=0.0)
        assert p.quote_for("X") is None


class TestNetWorthState:

    def test_update_total_includes_cash(self):
        state = NetWorthState(
            date=pd.Timestamp("2020-01-01"),
            positions=[AssetPosition("A", 10.0, 50.0), AssetPosition("B", 5.0, 20.0)],
            cash=400.0,
        )
        state.update_total()
        assert state.total_value == pytest.approx(1_000.0)
        assert state.weight("A") == pytest.approx(0.5)
        assert state.values_by_asset() == {"A": 500.0, "B": 100.0, "cash": 400.0}

    def test_weight_zero_total(self):
        state = initial_state("2020-01-01", cash=0.0, holdings={"A": (0.0, 10.0)})
        assert state.weight("A") == 0.0

    def test_copy_is_independent(self):
        state = _half_stock_state()
        clone = state.copy(cash=1.0)
        clone.positions[0].shares = 0.0
        assert state.positions[0].shares == pytest.approx(50.0)
        assert state.cash == pytest.approx(500.0)

    def test_invariant_violation_names_date(self):
        state = _half_stock_state()
        state.cash += 5.0
        with pytest.raises(ValueError, match="2020-01-01"):
            check_invariant(state)


class TestTradeRecord:

    def test_value_changes(self):
        trade = TradeRecord(
            date=pd.Timestamp("2020-01-01"),
            kind="sell",
            target=0.3,
            value_before={"X": 500.0, "cash": 500.0},
            value_after={"X": 300.0, "cash": 700.0},
        )
        assert trade.risk_value_change == pytest.approx(-200.0)
        assert trade.cash_change == pytest.approx(200.0)


class TestSimulate:

    def test_empty_series_returns_empty_timeline(self):
        calls = []
        timeline = simulate([], _half_stock_state(), [lambda s: calls.append(s) or s])
        assert timeline == []
        assert calls == []

    def test_one_state_per_observation(self):
        timeline = simulate(_points([10.0, 11.0, 12.0]), _half_stock_state())
        assert len(timeline) == 3
        assert [s.date for s in timeline] == list(pd.date_range("2020-01-01", periods=3))

    def test_marks_positions_to_market(self):
        timeline = simulate(_points([10.0, 12.0]), _half_stock_state())
        assert timeline[-1].total_value == pytest.approx(50 * 12.0 + 500.0)
        for state in timeline:
            assert abs(state.total_value - (state.positions_value + state.cash)) < 1e-2

    def test_missing_quote_keeps_previous_price(self):
        points = _points([10.0, 12.0, 12.0])
        points[2] = PricePoint(date=points[2].date, close_price=None)
        timeline = simulate(points, _half_stock_state())
        assert timeline[2].positions[0].last_price == pytest.approx(12.0)

    def test_states_are_not_shared(self):
        timeline = simulate(_points([10.0, 11.0]), _half_stock_state())
        assert timeline[0] is not timeline[1]
        assert timeline[0].positions[0] is not timeline[1].positions[0]

    def test_no_interest_without_rate_source(self):
        timeline = simulate(_points([10.0] * 40), _half_stock_state())
        assert all(s.cash_interest == 0.0 for s in timeline)
        assert timeline[-1].cash == pytest.approx(500.0)

    def test_interest_accrues_once_per_new_month(self):
        timeline = simulate(
            _points([10.0] * 70),  # 2020-01-01 → 2020-03-10
            _half_stock_state(),
            rate_source=RateSource.constant(0.12),
        )
        paying = [s for s in timeline if s.cash_interest != 0.0]
        assert [s.date for s in paying] == [pd.Timestamp("2020-02-01"), pd.Timestamp("2020-03-01")]
        assert paying[0].cash_interest == pytest.approx(500.0 * 0.01)
        assert timeline[-1].cash == pytest.approx(500.0 * 1.01 ** 2)

    def test_no_interest_on_first_observation(self):
        timeline = simulate(
            _points([10.0], start="2020-05-01"),
            _half_stock_state("2020-04-30"),
            rate_source=RateSource.constant(0.12),
        )
        assert timeline[0].cash_interest == 0.0

    def test_policies_run_in_order(self):
        seen = []

        def first(state):
            seen.append("first")
            state.cash -= 100.0
            state.positions[0].shares += 10.0
            return state

        def second(state):
            seen.append(("second", state.total_value))
            return state

        timeline = simulate(_points([10.0]), _half_stock_state(), [first, second])
        assert seen == ["first", ("second", pytest.approx(1_000.0))]
        assert timeline[0].cash_delta == pytest.approx(-100.0)
        assert timeline[0].position_deltas == {"X": pytest.approx(10.0)}

    def test_policy_objects_with_apply(self):
        class Seller:
            def apply(self, state):
                position = state.position("X")
                state.cash += position.value
                position.shares = 0.0
                return state

        timeline = simulate(_points([10.0, 20.0]), _half_stock_state(), [Seller()])
        assert timeline[-1].positions_value == 0.0
        assert timeline[-1].cash == pytest.approx(1_000.0)

    def test_policy_exception_propagates(self):
        def broken(state):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            simulate(_points([10.0]), _half_stock_state(), [broken])

    def test_totals_recomputed_after_each_policy(self):
        def stale_total(state):
            state.cash += 1.0
            state.total_value -= 1.0
            return state

        timeline = simulate(_points([10.0]), _half_stock_state(), [stale_total])
        assert timeline[0].total_value == pytest.approx(1_001.0)
