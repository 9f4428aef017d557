"""
Allocation policies.

Each policy is a small stateful object applied once per simulated day via
``apply(state) -> state``. Policies remember their own decision history
(last review date, contributions made) for the whole run and append a
TradeRecord for every action they take.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

import pandas as pd

import config
from src.engine.backtest import NetWorthState, TradeRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schedule helpers
# ---------------------------------------------------------------------------

def months_between(earlier: pd.Timestamp | str, later: pd.Timestamp | str) -> float:
    """
    Fractional calendar months from ``earlier`` to ``later``.

    Whole months are counted by calendar month arithmetic (with day clamping
    at month ends) anchored on ``later``; the remainder is the fraction of
    the surrounding month-long interval that has elapsed.
    """
    a = pd.Timestamp(later)
    b = pd.Timestamp(earlier)
    whole = (b.year - a.year) * 12 + (b.month - a.month)
    anchor = a + pd.DateOffset(months=whole)
    if b < anchor:
        anchor2 = a + pd.DateOffset(months=whole - 1)
        adjust = (b - anchor) / (anchor - anchor2)
    else:
        anchor2 = a + pd.DateOffset(months=whole + 1)
        adjust = (b - anchor) / (anchor2 - anchor)
    return -(whole + adjust) + 0.0


def whole_months_between(earlier: pd.Timestamp, later: pd.Timestamp) -> int:
    """Calendar month count from ``earlier`` to ``later``, ignoring days."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def validate_weights(weights: Mapping[str, float]) -> None:
    """Raise ValueError unless weights are each in [0, 1] and sum to at most 1."""
    if not weights:
        raise ValueError("At least one instrument weight is required")
    for code, w in weights.items():
        if not 0.0 <= w <= 1.0:
            raise ValueError(f"Weight for {code} must be within [0, 1], got {w}")
    total = sum(weights.values())
    if total > 1.0 + 1e-9:
        raise ValueError(f"Weights must sum to within [0, 1], got {total * 100:.2f}%")


def _valid(value) -> bool:
    return value is not None and not pd.isna(value)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class TradingPolicy:
    """Shared trade bookkeeping."""

    def __init__(self):
        self.trades: list[TradeRecord] = []

    def _record(
        self,
        state: NetWorthState,
        kind: str,
        target: float,
        value_before: dict[str, float],
        signal: float | None = None,
    ) -> None:
        trade = TradeRecord(
            date=state.date,
            kind=kind,
            target=target,
            value_before=value_before,
            value_after=state.values_by_asset(),
            signal=signal,
        )
        self.trades.append(trade)
        logger.debug("%s %s → %.4f (signal=%s)", state.date.date(), kind, target, signal)

    def apply(self, state: NetWorthState) -> NetWorthState:
        raise NotImplementedError

    def __call__(self, state: NetWorthState) -> NetWorthState:
        return self.apply(state)


def _set_ratio(state: NetWorthState, instrument_id: str, ratio: float) -> None:
    """Split total value between one instrument and cash at ``ratio``."""
    position = state.position(instrument_id)
    total = state.total_value
    target_value = total * ratio
    position.shares = target_value / position.last_price
    state.cash = total - target_value
    state.update_total()


# ---------------------------------------------------------------------------
# Periodic review
# ---------------------------------------------------------------------------

class PeriodicReviewPolicy(TradingPolicy):
    """
    Re-evaluate a signal-driven target ratio every N months.

    Parameters
    ----------
    instrument_id : str
        The risk asset bought and sold against cash.
    signals : pd.Series
        Signal value indexed by date. Dates without a signal are skipped.
    ratio_fn : callable
        ``ratio_fn(signal) -> discretized target ratio``.
    initial_ratio : float
        Ratio held at the start of the run.
    review_interval_months : float
        Minimum fractional months between reviews.
    deadband : float
        Target changes smaller than this are ignored.
    """

    def __init__(
        self,
        instrument_id: str,
        signals: pd.Series,
        ratio_fn: Callable[[float], float],
        initial_ratio: float,
        review_interval_months: float = config.REVIEW_INTERVAL_MONTHS,
        deadband: float = config.REBALANCE_DEADBAND,
    ):
        super().__init__()
        if review_interval_months <= 0:
            raise ValueError(
                f"review_interval_months must be positive, got {review_interval_months}"
            )
        self.instrument_id = instrument_id
        self.signals = signals
        self.ratio_fn = ratio_fn
        self.current_ratio = initial_ratio
        self.review_interval_months = review_interval_months
        self.deadband = deadband
        self.last_review: pd.Timestamp | None = None

    def apply(self, state: NetWorthState) -> NetWorthState:
        if self.last_review is None:
            self.last_review = state.date
            return state

        if months_between(self.last_review, state.date) < self.review_interval_months:
            return state

        signal = self.signals.get(state.date)
        if not _valid(signal):
            return state

        target = self.ratio_fn(float(signal))
        if abs(target - self.current_ratio) < self.deadband:
            self.last_review = state.date
            return state

        position = state.position(self.instrument_id)
        if position is None or position.last_price <= 0:
            return state

        before = state.values_by_asset()
        kind = "buy" if target > self.current_ratio else "sell"
        _set_ratio(state, self.instrument_id, target)

        self.current_ratio = target
        self.last_review = state.date
        self._record(state, kind, target, before, signal=float(signal))
        return state


# ---------------------------------------------------------------------------
# Drift threshold
# ---------------------------------------------------------------------------

class DriftThresholdPolicy(TradingPolicy):
    """
    Hold a fixed target ratio, rebalancing when the actual weight drifts
    further than ``threshold`` from it.
    """

    def __init__(
        self,
        instrument_id: str,
        target_ratio: float = config.FIXED_STOCK_RATIO,
        threshold: float = config.DRIFT_THRESHOLD,
    ):
        super().__init__()
        if not 0.0 <= target_ratio <= 1.0:
            raise ValueError(f"target_ratio must be within [0, 1], got {target_ratio}")
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.instrument_id = instrument_id
        self.target_ratio = target_ratio
        self.threshold = threshold
        self._seeded = False

    def apply(self, state: NetWorthState) -> NetWorthState:
        if not self._seeded:
            self._seeded = True
            return state

        position = state.position(self.instrument_id)
        if position is None or position.last_price <= 0 or state.total_value <= 0:
            return state

        weight = state.weight(self.instrument_id)
        if abs(weight - self.target_ratio) <= self.threshold:
            return state

        before = state.values_by_asset()
        kind = "buy" if weight < self.target_ratio else "sell"
        _set_ratio(state, self.instrument_id, self.target_ratio)
        self._record(state, kind, self.target_ratio, before, signal=weight)
        return state


# ---------------------------------------------------------------------------
# Dollar-cost averaging
# ---------------------------------------------------------------------------

class DollarCostAveragingPolicy(TradingPolicy):
    """
    Invest a fixed amount once per calendar month.

    Stops after ``months`` contributions or once ``total_budget`` has been
    invested, whichever comes first.
    """

    def __init__(
        self,
        instrument_id: str,
        monthly_budget: float,
        months: int = config.DCA_MONTHS,
        total_budget: float | None = None,
    ):
        super().__init__()
        if monthly_budget <= 0:
            raise ValueError(f"monthly_budget must be positive, got {monthly_budget}")
        if months <= 0:
            raise ValueError(f"months must be positive, got {months}")
        self.instrument_id = instrument_id
        self.monthly_budget = monthly_budget
        self.months = months
        self.total_budget = total_budget if total_budget is not None else monthly_budget * months
        self.contributions = 0
        self.invested = 0.0
        self.last_month: tuple[int, int] | None = None

    @property
    def finished(self) -> bool:
        return self.contributions >= self.months or self.invested >= self.total_budget

    def apply(self, state: NetWorthState) -> NetWorthState:
        month = (state.date.year, state.date.month)
        if month == self.last_month or self.finished:
            return state

        amount = min(self.monthly_budget, state.cash, self.total_budget - self.invested)
        if amount <= 0:
            return state

        position = state.position(self.instrument_id)
        if position is None or position.last_price <= 0:
            return state

        before = state.values_by_asset()
        position.shares += amount / position.last_price
        state.cash -= amount
        state.update_total()

        self.last_month = month
        self.contributions += 1
        self.invested += amount
        self._record(state, "contribution", amount, before)
        return state


# ---------------------------------------------------------------------------
# Fixed-interval weight rebalance
# ---------------------------------------------------------------------------

class FixedIntervalRebalancePolicy(TradingPolicy):
    """
    Reset every instrument to ``total_value * weight`` every N calendar
    months. Instruments without a weight are sold to cash.
    """

    def __init__(
        self,
        weights: Mapping[str, float],
        interval_months: int = config.PORTFOLIO_REBALANCE_MONTHS,
    ):
        super().__init__()
        validate_weights(weights)
        if interval_months <= 0:
            raise ValueError(f"interval_months must be positive, got {interval_months}")
        self.weights = dict(weights)
        self.interval_months = interval_months
        self.last_rebalance: pd.Timestamp | None = None

    def apply(self, state: NetWorthState) -> NetWorthState:
        if self.last_rebalance is None:
            self.last_rebalance = state.date
            return state

        if whole_months_between(self.last_rebalance, state.date) < self.interval_months:
            return state

        self.last_rebalance = state.date
        before = state.values_by_asset()
        total = state.total_value

        for position in state.positions:
            if position.last_price <= 0:
                continue
            target_value = total * self.weights.get(position.instrument_id, 0.0)
            position.shares = target_value / position.last_price

        state.cash = total - state.positions_value
        state.update_total()
        self._record(state, "rebalance", total, before)
        return state


# ---------------------------------------------------------------------------
# Quote updates
# ---------------------------------------------------------------------------

class QuoteUpdatePolicy:
    """
    Mark positions from per-instrument close series.

    Used ahead of other policies when the simulated series carries no quotes
    of its own.
    """

    def __init__(self, closes: Mapping[str, pd.Series]):
        self.closes = dict(closes)

    def apply(self, state: NetWorthState) -> NetWorthState:
        for position in state.positions:
            series = self.closes.get(position.instrument_id)
            if series is None:
                continue
            price = series.get(state.date)
            if _valid(price) and price > 0:
                position.last_price = float(price)
        return state

    def __call__(self, state: NetWorthState) -> NetWorthState:
        return self.apply(state)
