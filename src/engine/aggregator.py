"""
Result aggregation.

Turns a simulated net-worth timeline into summary statistics (total and
annualized return, maximum drawdown) and a calendar-year breakdown, and
attributes policy trades to the years they happened in.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

import numpy as np
import pandas as pd

from src.engine.backtest import CASH, NetWorthState, PricePoint, TradeRecord
from src.risk.metrics import (
    annualized_return_pct,
    elapsed_days,
    max_drawdown_pct,
    total_return_pct,
)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DailyValue:
    date: pd.Timestamp
    value: float
    change_percent: float


@dataclass(frozen=True)
class PositionSnapshot:
    instrument_id: str
    shares: float
    value: float
    price: float


@dataclass(frozen=True)
class YearlyDetail:
    """
    One calendar year of a timeline.

    Optional fields stay None unless the aggregation options (or
    ``attach_trades``) asked for them.
    """

    year: int
    start_value: float
    end_value: float
    return_pct: float
    start_risk_value: float
    end_risk_value: float
    start_positions: list[PositionSnapshot] | None = None
    end_positions: list[PositionSnapshot] | None = None
    start_cash: float | None = None
    end_cash: float | None = None
    cash_interest: float | None = None
    invested_amount: float | None = None
    buy_amount: float | None = None
    sell_amount: float | None = None
    bond_buy_amount: float | None = None
    bond_sell_amount: float | None = None
    price_change: float | None = None
    start_index_price: float | None = None
    end_index_price: float | None = None
    trade_count: int = 0


@dataclass(frozen=True)
class DailyAllocation:
    """Risk-asset / cash split on one day of a strategy run."""

    date: pd.Timestamp
    risk_ratio: float
    cash_ratio: float
    risk_value: float
    cash_value: float
    total_value: float
    change_percent: float


class _CurveMixin:
    def equity_curve(self) -> pd.Series:
        """Total value indexed by date."""
        return pd.Series(
            [d.value for d in self.daily_values],
            index=pd.DatetimeIndex([d.date for d in self.daily_values]),
            name="value",
            dtype=float,
        )

    def yearly_frame(self) -> pd.DataFrame:
        """Yearly details as a DataFrame indexed by year (position lists dropped)."""
        rows = []
        for d in self.yearly_details:
            row = {k: v for k, v in vars(d).items() if not k.endswith("_positions")}
            rows.append(row)
        if not rows:
            return pd.DataFrame()
        return pd.DataFrame(rows).set_index("year")


@dataclass(frozen=True)
class ControlGroupResult(_CurveMixin):
    """Outcome of a run without signal-driven allocation states."""

    final_value: float
    total_return: float
    annualized_return: float
    max_drawdown: float
    daily_values: list[DailyValue] = field(default_factory=list)
    yearly_details: list[YearlyDetail] = field(default_factory=list)
    trades: list[TradeRecord] = field(default_factory=list)


@dataclass(frozen=True)
class StrategyResult(_CurveMixin):
    """Outcome of a signal-driven stock/cash strategy."""

    trades: list[TradeRecord]
    daily_states: list[DailyAllocation]
    final_value: float
    total_return: float
    annualized_return: float
    max_drawdown: float
    final_risk_ratio: float
    yearly_details: list[YearlyDetail]
    daily_values: list[DailyValue] = field(default_factory=list)


def neutral_result(initial_capital: float) -> ControlGroupResult:
    """Result for a run with no observations: capital untouched."""
    return ControlGroupResult(
        final_value=initial_capital,
        total_return=0.0,
        annualized_return=0.0,
        max_drawdown=0.0,
    )


def neutral_strategy_result(initial_capital: float) -> StrategyResult:
    return StrategyResult(
        trades=[],
        daily_states=[],
        final_value=initial_capital,
        total_return=0.0,
        annualized_return=0.0,
        max_drawdown=0.0,
        final_risk_ratio=0.0,
        yearly_details=[],
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _snapshots(state: NetWorthState) -> list[PositionSnapshot]:
    return [
        PositionSnapshot(
            instrument_id=p.instrument_id,
            shares=p.shares,
            value=p.value,
            price=p.last_price,
        )
        for p in state.positions
        if p.shares > 0
    ]


def _year_spans(timeline: Sequence[NetWorthState]) -> dict[int, list]:
    """Year → [first index, last index, summed cash interest], one pass."""
    spans: dict[int, list] = {}
    for i, state in enumerate(timeline):
        span = spans.get(state.date.year)
        if span is None:
            spans[state.date.year] = [i, i, state.cash_interest]
        else:
            span[1] = i
            span[2] += state.cash_interest
    return spans


def yearly_details(
    timeline: Sequence[NetWorthState],
    initial_capital: float,
    include_positions: bool = False,
    include_cash: bool = False,
    include_invested_amount: bool = False,
) -> list[YearlyDetail]:
    """Calendar-year breakdown of a timeline, in year order."""
    details = []
    for year, (first, last, interest) in _year_spans(timeline).items():
        start, end = timeline[first], timeline[last]
        detail = YearlyDetail(
            year=year,
            start_value=start.total_value,
            end_value=end.total_value,
            return_pct=(
                (end.total_value / start.total_value - 1.0) * 100
                if start.total_value > 0
                else 0.0
            ),
            start_risk_value=start.positions_value,
            end_risk_value=end.positions_value,
        )

        if include_positions:
            detail = replace(
                detail,
                start_positions=_snapshots(start),
                end_positions=_snapshots(end),
            )

        if include_cash:
            detail = replace(
                detail,
                start_cash=start.cash,
                end_cash=end.cash,
                cash_interest=interest,
            )

        if include_invested_amount:
            invested = (initial_capital - end.cash) - (initial_capital - start.cash)
            detail = replace(detail, invested_amount=max(0.0, invested))

        details.append(detail)
    return details


def aggregate(
    timeline: Sequence[NetWorthState],
    initial_capital: float,
    include_positions: bool = False,
    include_cash: bool = False,
    include_invested_amount: bool = False,
) -> ControlGroupResult:
    """
    Summarize a simulated timeline.

    Parameters
    ----------
    timeline : sequence of NetWorthState
        Output of ``simulate``. Must not be empty; callers substitute
        ``neutral_result`` for empty input.
    initial_capital : float
        Capital the run started with; the reference for returns and the
        first drawdown peak.
    include_positions, include_cash, include_invested_amount : bool
        Optional yearly fields to fill.

    Returns
    -------
    ControlGroupResult
    """
    if not timeline:
        raise ValueError("Timeline is empty; use neutral_result() for runs without data")

    values = np.array([s.total_value for s in timeline], dtype=float)
    daily_values = [
        DailyValue(
            date=s.date,
            value=s.total_value,
            change_percent=total_return_pct(s.total_value, initial_capital),
        )
        for s in timeline
    ]

    final_value = float(values[-1])
    days = elapsed_days(timeline[0].date, timeline[-1].date)

    return ControlGroupResult(
        final_value=final_value,
        total_return=total_return_pct(final_value, initial_capital),
        annualized_return=annualized_return_pct(final_value, initial_capital, days),
        max_drawdown=max_drawdown_pct(values, initial_peak=initial_capital),
        daily_values=daily_values,
        yearly_details=yearly_details(
            timeline,
            initial_capital,
            include_positions=include_positions,
            include_cash=include_cash,
            include_invested_amount=include_invested_amount,
        ),
    )


def attach_trades(
    details: Sequence[YearlyDetail],
    trades: Sequence[TradeRecord],
    price_series: Sequence[PricePoint] | None = None,
) -> list[YearlyDetail]:
    """
    Add trade flows to yearly details.

    Buy/sell amounts are the per-instrument value changes of each trade,
    summed gross, so a rebalance counts both legs. Bond buy/sell amounts
    are the cash-side changes. ``price_change`` is the part
    of the year's instrument value change not explained by net buying.
    With ``price_series``, the first and last close of each year are
    recorded as index prices.
    """
    flows: dict[int, dict[str, float]] = {}
    for trade in trades:
        f = flows.setdefault(
            trade.date.year,
            {"buy": 0.0, "sell": 0.0, "bond_buy": 0.0, "bond_sell": 0.0, "count": 0},
        )
        for code in set(trade.value_before) | set(trade.value_after):
            if code == CASH:
                continue
            delta = trade.value_after.get(code, 0.0) - trade.value_before.get(code, 0.0)
            if delta >= 0:
                f["buy"] += delta
            else:
                f["sell"] += -delta
        cash = trade.cash_change
        if cash >= 0:
            f["bond_buy"] += cash
        else:
            f["bond_sell"] += -cash
        f["count"] += 1

    closes: dict[int, list[float]] = {}
    for point in price_series or ():
        if point.close_price is None or point.close_price <= 0:
            continue
        span = closes.get(point.date.year)
        if span is None:
            closes[point.date.year] = [point.close_price, point.close_price]
        else:
            span[1] = point.close_price

    enriched = []
    for detail in details:
        f = flows.get(detail.year, {})
        buy = f.get("buy", 0.0)
        sell = f.get("sell", 0.0)
        first_close, last_close = closes.get(detail.year, (None, None))
        enriched.append(
            replace(
                detail,
                buy_amount=buy,
                sell_amount=sell,
                bond_buy_amount=f.get("bond_buy", 0.0),
                bond_sell_amount=f.get("bond_sell", 0.0),
                price_change=(detail.end_risk_value - detail.start_risk_value) - (buy - sell),
                start_index_price=first_close,
                end_index_price=last_close,
                trade_count=int(f.get("count", 0)),
            )
        )
    return enriched


def allocation_states(
    timeline: Sequence[NetWorthState],
    initial_capital: float,
) -> list[DailyAllocation]:
    """Per-day risk/cash split."""
    states = []
    for s in timeline:
        risk_value = s.positions_value
        ratio = risk_value / s.total_value if s.total_value > 0 else 0.0
        states.append(
            DailyAllocation(
                date=s.date,
                risk_ratio=ratio,
                cash_ratio=1.0 - ratio,
                risk_value=risk_value,
                cash_value=s.cash,
                total_value=s.total_value,
                change_percent=total_return_pct(s.total_value, initial_capital),
            )
        )
    return states


def strategy_result(
    timeline: Sequence[NetWorthState],
    initial_capital: float,
    trades: Sequence[TradeRecord],
    price_series: Sequence[PricePoint] | None = None,
) -> StrategyResult:
    """Full result for a stock/cash strategy, trades attributed per year."""
    if not timeline:
        return neutral_strategy_result(initial_capital)

    base = aggregate(timeline, initial_capital, include_positions=True, include_cash=True)
    states = allocation_states(timeline, initial_capital)
    return StrategyResult(
        trades=sorted(trades, key=lambda t: t.date),
        daily_states=states,
        final_value=base.final_value,
        total_return=base.total_return,
        annualized_return=base.annualized_return,
        max_drawdown=base.max_drawdown,
        final_risk_ratio=states[-1].risk_ratio,
        yearly_details=attach_trades(base.yearly_details, trades, price_series),
        daily_values=base.daily_values,
    )
