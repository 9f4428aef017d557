"""
Net-worth timeline simulator.

Daily cycle: mark positions to market → accrue cash interest on month
boundaries → run the policy pipeline → record share and cash deltas.
Produces one NetWorthState per input observation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Protocol, Sequence, Union

import pandas as pd

import config

logger = logging.getLogger(__name__)

CASH = "cash"


# ---------------------------------------------------------------------------
# Input observations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricePoint:
    """One traded day of a price/valuation series."""

    date: pd.Timestamp
    close_price: float | None = None
    valuation: float | None = None  # P/E
    market_cap: float | None = None
    quotes: dict[str, float] | None = None  # instrument → close, multi-asset days

    def quote_for(self, instrument_id: str) -> float | None:
        """Closing price for an instrument, or None when it has no usable quote."""
        if self.quotes is not None:
            price = self.quotes.get(instrument_id)
        else:
            price = self.close_price
        if price is None or pd.isna(price) or price <= 0:
            return None
        return float(price)


@dataclass(frozen=True)
class RatePoint:
    """Annual interest rate (decimal) for one period."""

    date: pd.Timestamp
    annual_rate: float


# ---------------------------------------------------------------------------
# Portfolio state
# ---------------------------------------------------------------------------

@dataclass
class AssetPosition:
    """Holding of a single instrument, marked at its last known price."""

    instrument_id: str
    shares: float
    last_price: float

    @property
    def value(self) -> float:
        return self.shares * self.last_price


@dataclass
class NetWorthState:
    """Snapshot of the portfolio on one simulated day."""

    date: pd.Timestamp
    positions: list[AssetPosition]
    cash: float
    total_value: float = 0.0
    cash_interest: float = 0.0
    cash_delta: float = 0.0
    position_deltas: dict[str, float] = field(default_factory=dict)

    @property
    def positions_value(self) -> float:
        return sum(p.value for p in self.positions)

    def position(self, instrument_id: str) -> AssetPosition | None:
        for p in self.positions:
            if p.instrument_id == instrument_id:
                return p
        return None

    def weight(self, instrument_id: str) -> float:
        """Fraction of total value held in one instrument (0 if value is zero)."""
        p = self.position(instrument_id)
        if p is None or self.total_value <= 0:
            return 0.0
        return p.value / self.total_value

    def values_by_asset(self) -> dict[str, float]:
        """Instrument id → market value, plus cash under ``"cash"``."""
        values = {p.instrument_id: p.value for p in self.positions}
        values[CASH] = self.cash
        return values

    def update_total(self) -> None:
        """Recalculate total value = cash + sum(position values)."""
        self.total_value = self.positions_value + self.cash

    def copy(self, **changes) -> NetWorthState:
        """Copy with independent position objects."""
        state = replace(
            self,
            positions=[replace(p) for p in self.positions],
            position_deltas=dict(self.position_deltas),
        )
        for name, value in changes.items():
            setattr(state, name, value)
        return state


@dataclass(frozen=True)
class TradeRecord:
    """
    One policy action.

    ``target`` is the new target ratio for buy/sell, the contributed amount
    for contributions, and the total value re-split for rebalances.
    """

    date: pd.Timestamp
    kind: str  # 'buy' | 'sell' | 'rebalance' | 'contribution'
    target: float
    value_before: dict[str, float]
    value_after: dict[str, float]
    signal: float | None = None

    @property
    def risk_value_change(self) -> float:
        """Net change in instrument (non-cash) value caused by the trade."""
        before = sum(v for k, v in self.value_before.items() if k != CASH)
        after = sum(v for k, v in self.value_after.items() if k != CASH)
        return after - before

    @property
    def cash_change(self) -> float:
        return self.value_after.get(CASH, 0.0) - self.value_before.get(CASH, 0.0)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

class Policy(Protocol):
    """Protocol for allocation policies applied once per simulated day."""

    def apply(self, state: NetWorthState) -> NetWorthState:
        """Return the (possibly adjusted) state for this day."""
        ...


class MonthlyRateProvider(Protocol):
    """Anything that can quote a monthly interest rate for a date."""

    def monthly_rate(self, date: pd.Timestamp) -> float:
        ...


PolicyLike = Union[Policy, Callable[[NetWorthState], NetWorthState]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _month_changed(date: pd.Timestamp, prev_date: pd.Timestamp | None) -> bool:
    """True when ``date`` opens a calendar month not yet seen."""
    if prev_date is None:
        return False
    return (date.year, date.month) != (prev_date.year, prev_date.month)


def _run_policy(policy: PolicyLike, state: NetWorthState) -> NetWorthState:
    apply = getattr(policy, "apply", None)
    if apply is not None:
        return apply(state)
    return policy(state)


def check_invariant(
    state: NetWorthState,
    tolerance: float = config.INVARIANT_TOLERANCE,
) -> None:
    """Raise if total value disagrees with positions + cash."""
    expected = state.positions_value + state.cash
    if abs(state.total_value - expected) >= tolerance:
        raise ValueError(
            f"Net worth invariant violated on {state.date.date()}: "
            f"total_value={state.total_value:.4f}, positions+cash={expected:.4f}"
        )


def initial_state(
    date: pd.Timestamp | str,
    cash: float,
    holdings: dict[str, tuple[float, float]] | None = None,
) -> NetWorthState:
    """
    Build a starting state.

    Parameters
    ----------
    date : Timestamp or str
        Date of the first observation.
    cash : float
        Starting cash.
    holdings : dict or None
        Instrument id → (shares, price).
    """
    positions = [
        AssetPosition(instrument_id=code, shares=shares, last_price=price)
        for code, (shares, price) in (holdings or {}).items()
    ]
    state = NetWorthState(date=pd.Timestamp(date), positions=positions, cash=cash)
    state.update_total()
    return state


# ---------------------------------------------------------------------------
# Core simulator
# ---------------------------------------------------------------------------

def simulate(
    price_series: Sequence[PricePoint],
    start_state: NetWorthState,
    policies: Sequence[PolicyLike] = (),
    rate_source: MonthlyRateProvider | None = None,
) -> list[NetWorthState]:
    """
    Run the net-worth simulation.

    Parameters
    ----------
    price_series : sequence of PricePoint
        Observations in ascending date order. An empty sequence yields an
        empty timeline.
    start_state : NetWorthState
        Holdings before the first observation.
    policies : sequence
        Objects with ``apply(state) -> state`` (or plain callables), applied
        in order, each receiving the previous one's output.
    rate_source : MonthlyRateProvider or None
        Supplies the monthly cash rate. None disables interest.

    Returns
    -------
    list[NetWorthState]
        One state per observation.
    """
    timeline: list[NetWorthState] = []
    prev = start_state
    prev_date: pd.Timestamp | None = None

    for point in price_series:
        date = pd.Timestamp(point.date)

        # ── 1. Mark-to-market ──
        state = prev.copy(
            date=date,
            cash_interest=0.0,
            cash_delta=0.0,
            position_deltas={},
        )
        for position in state.positions:
            price = point.quote_for(position.instrument_id)
            if price is not None:
                position.last_price = price

        # ── 2. Month-boundary interest ──
        if rate_source is not None and _month_changed(date, prev_date):
            interest = state.cash * rate_source.monthly_rate(date)
            state.cash_interest = interest
            state.cash += interest

        # ── 3. Before snapshot ──
        state.update_total()
        check_invariant(state)
        cash_before = state.cash
        shares_before = {p.instrument_id: p.shares for p in state.positions}

        # ── 4. Policy pipeline ──
        for policy in policies:
            state = _run_policy(policy, state)
            state.update_total()

        # ── 5. After snapshot ──
        check_invariant(state)
        state.cash_delta = state.cash - cash_before
        state.position_deltas = {
            p.instrument_id: p.shares - shares_before.get(p.instrument_id, 0.0)
            for p in state.positions
        }

        # ── 6. Append ──
        timeline.append(state)
        prev = state
        prev_date = date

    if timeline:
        logger.debug(
            "Simulated %d days: %s → %s, final value %.2f",
            len(timeline),
            timeline[0].date.date(),
            timeline[-1].date.date(),
            timeline[-1].total_value,
        )
    return timeline
