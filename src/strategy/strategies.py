"""
Strategy runners.

Each runner builds a starting state, wires the policies for one strategy,
runs the simulator and aggregates the timeline. Runners return a neutral
result (capital untouched) for empty input and raise ValueError for
unusable configuration or missing first-day data.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Mapping, Sequence

import pandas as pd

import config
from src.data.rates import RateSource
from src.data.series import calendar_days, close_table, signal_series
from src.engine.aggregator import (
    ControlGroupResult,
    StrategyResult,
    aggregate,
    attach_trades,
    neutral_result,
    neutral_strategy_result,
    strategy_result,
)
from src.engine.backtest import NetWorthState, PricePoint, initial_state, simulate
from src.strategy.allocation import (
    AllocationParams,
    equity_risk_premium,
    erp_params,
    pe_params,
    target_ratio,
)
from src.strategy.policies import (
    DollarCostAveragingPolicy,
    DriftThresholdPolicy,
    FixedIntervalRebalancePolicy,
    PeriodicReviewPolicy,
    QuoteUpdatePolicy,
    validate_weights,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rates(rate_source: RateSource | None) -> RateSource:
    return rate_source if rate_source is not None else RateSource()


def _first_price(point: PricePoint, instrument_id: str) -> float:
    price = point.quote_for(instrument_id)
    if price is None:
        raise ValueError(
            f"No usable price for {instrument_id} on the first day ({point.date.date()})"
        )
    return price


def _split_state(
    date: pd.Timestamp,
    capital: float,
    instrument_id: str,
    price: float,
    ratio: float,
) -> NetWorthState:
    """Starting state with ``ratio`` of capital in one instrument, the rest cash."""
    stock_value = capital * ratio
    return initial_state(
        date,
        cash=capital - stock_value,
        holdings={instrument_id: (stock_value / price, price)},
    )


def _log_completion(name: str, result: ControlGroupResult | StrategyResult) -> None:
    logger.info(
        "%s: total return %.2f%%, annualized %.2f%%, max drawdown %.2f%%, %d trades",
        name,
        result.total_return,
        result.annualized_return,
        result.max_drawdown,
        len(result.trades),
    )


def _run_periodic_balance(
    name: str,
    prices: Sequence[PricePoint],
    signals: pd.Series,
    initial_capital: float,
    params: AllocationParams,
    review_interval_months: float,
    deadband: float,
    rate_source: RateSource | None,
    instrument_id: str,
) -> StrategyResult:
    first = prices[0]
    price = _first_price(first, instrument_id)
    first_signal = signals.get(first.date)
    if first_signal is None or pd.isna(first_signal):
        raise ValueError(f"{name}: no signal on the first day ({first.date.date()})")

    ratio = target_ratio(float(first_signal), params)
    policy = PeriodicReviewPolicy(
        instrument_id,
        signals,
        ratio_fn=lambda value: target_ratio(value, params),
        initial_ratio=ratio,
        review_interval_months=review_interval_months,
        deadband=deadband,
    )

    start = _split_state(first.date, initial_capital, instrument_id, price, ratio)
    timeline = simulate(prices, start, [policy], _rates(rate_source))
    result = strategy_result(timeline, initial_capital, policy.trades, prices)
    _log_completion(name, result)
    return result


# ---------------------------------------------------------------------------
# Valuation-driven stock/bond balance
# ---------------------------------------------------------------------------

def run_valuation_balance(
    prices: Sequence[PricePoint],
    initial_capital: float = config.INITIAL_CAPITAL,
    params: AllocationParams | None = None,
    review_interval_months: float = config.REVIEW_INTERVAL_MONTHS,
    deadband: float = config.REBALANCE_DEADBAND,
    rate_source: RateSource | None = None,
    instrument_id: str = config.VALUATION_INDEX,
) -> StrategyResult:
    """
    P/E-driven stock/bond balance.

    The first day's P/E sets the starting ratio; afterwards the ratio is
    reviewed every ``review_interval_months``. Cash earns the bond rate
    (``config.DEFAULT_ANNUAL_RATE`` when no rate source is given).

    Parameters
    ----------
    prices : sequence of PricePoint
        Daily closes with the P/E in ``valuation``.
    params : AllocationParams or None
        Defaults to ``pe_params()``.

    Returns
    -------
    StrategyResult
    """
    if not prices:
        logger.warning("P/E balance: empty price series, returning neutral result")
        return neutral_strategy_result(initial_capital)

    return _run_periodic_balance(
        "P/E balance",
        prices,
        signal_series(prices),
        initial_capital,
        params if params is not None else pe_params(),
        review_interval_months,
        deadband,
        rate_source,
        instrument_id,
    )


def erp_series(
    valuation_prices: Sequence[PricePoint],
    rate_source: RateSource,
) -> pd.Series:
    """Equity risk premium (percent) by date from P/E readings and bond rates."""
    values = {}
    for point in valuation_prices:
        erp = equity_risk_premium(point.valuation, rate_source.annual_rate(point.date))
        if erp is not None:
            values[point.date] = erp
    return pd.Series(values, dtype=float)


def run_erp_balance(
    valuation_prices: Sequence[PricePoint],
    fund_prices: Sequence[PricePoint],
    rate_source: RateSource | None = None,
    initial_capital: float = config.INITIAL_CAPITAL,
    params: AllocationParams | None = None,
    review_interval_months: float = config.REVIEW_INTERVAL_MONTHS,
    deadband: float = config.REBALANCE_DEADBAND,
    instrument_id: str = config.TRACKING_FUND,
) -> StrategyResult:
    """
    ERP-driven stock/bond balance.

    The signal is the broad index's earnings yield minus the month's bond
    rate; trades happen in a fund tracking the index. Only days where the
    fund has a close are simulated.
    """
    fund_days = [p for p in fund_prices if p.quote_for(instrument_id) is not None]
    if not fund_days or not valuation_prices:
        logger.warning("ERP balance: empty input, returning neutral result")
        return neutral_strategy_result(initial_capital)

    rates = _rates(rate_source)
    return _run_periodic_balance(
        "ERP balance",
        fund_days,
        erp_series(valuation_prices, rates),
        initial_capital,
        params if params is not None else erp_params(),
        review_interval_months,
        deadband,
        rates,
        instrument_id,
    )


# ---------------------------------------------------------------------------
# Fixed ratio with drift band
# ---------------------------------------------------------------------------

def run_drift_balance(
    prices: Sequence[PricePoint],
    initial_capital: float = config.INITIAL_CAPITAL,
    stock_ratio: float = config.FIXED_STOCK_RATIO,
    threshold: float = config.DRIFT_THRESHOLD,
    rate_source: RateSource | None = None,
    instrument_id: str = config.VALUATION_INDEX,
) -> StrategyResult:
    """Hold ``stock_ratio`` in stock, rebalancing once it drifts past ``threshold``."""
    policy = DriftThresholdPolicy(instrument_id, stock_ratio, threshold)
    if not prices:
        logger.warning("Drift balance: empty price series, returning neutral result")
        return neutral_strategy_result(initial_capital)

    first = prices[0]
    start = _split_state(
        first.date, initial_capital, instrument_id, _first_price(first, instrument_id), stock_ratio
    )
    timeline = simulate(prices, start, [policy], _rates(rate_source))
    result = strategy_result(timeline, initial_capital, policy.trades, prices)
    _log_completion("Drift balance", result)
    return result


# ---------------------------------------------------------------------------
# Control groups
# ---------------------------------------------------------------------------

def run_dca(
    prices: Sequence[PricePoint],
    initial_capital: float = config.INITIAL_CAPITAL,
    months: int = config.DCA_MONTHS,
    rate_source: RateSource | None = None,
    instrument_id: str = config.VALUATION_INDEX,
) -> ControlGroupResult:
    """
    Dollar-cost averaging: ``initial_capital / months`` invested on the first
    trading day of each month until ``months`` contributions are made.
    Uninvested cash earns the bond rate.
    """
    if months <= 0:
        raise ValueError(f"months must be positive, got {months}")
    policy = DollarCostAveragingPolicy(
        instrument_id,
        monthly_budget=initial_capital / months,
        months=months,
        total_budget=initial_capital,
    )
    if not prices:
        logger.warning("DCA: empty price series, returning neutral result")
        return neutral_result(initial_capital)

    first = prices[0]
    start = initial_state(
        first.date,
        cash=initial_capital,
        holdings={instrument_id: (0.0, _first_price(first, instrument_id))},
    )
    timeline = simulate(prices, start, [policy], _rates(rate_source))
    base = aggregate(
        timeline,
        initial_capital,
        include_positions=True,
        include_cash=True,
        include_invested_amount=True,
    )
    result = replace(
        base,
        trades=list(policy.trades),
        yearly_details=attach_trades(base.yearly_details, policy.trades, prices),
    )
    _log_completion("DCA", result)
    return result


def run_cash_baseline(
    start: pd.Timestamp | str = config.START_DATE,
    end: pd.Timestamp | str = config.END_DATE,
    initial_capital: float = config.INITIAL_CAPITAL,
    rate_source: RateSource | None = None,
) -> ControlGroupResult:
    """All capital held as cash earning the bond rate, every calendar day."""
    days = calendar_days(start, end)
    if not days:
        logger.warning("Cash baseline: end precedes start, returning neutral result")
        return neutral_result(initial_capital)

    timeline = simulate(days, initial_state(days[0].date, initial_capital), [], _rates(rate_source))
    result = aggregate(timeline, initial_capital, include_cash=True)
    _log_completion("Cash baseline", result)
    return result


# ---------------------------------------------------------------------------
# Multi-stock portfolios
# ---------------------------------------------------------------------------

def _portfolio_closes(
    price_map: Mapping[str, Sequence[PricePoint]],
    weights: Mapping[str, float],
) -> pd.DataFrame:
    validate_weights(weights)
    if not price_map:
        raise ValueError("At least one instrument price series is required")
    unknown = set(weights) - set(price_map)
    if unknown:
        raise ValueError(f"Weights given for instruments without prices: {sorted(unknown)}")
    return close_table(price_map)


def _portfolio_start(
    closes: pd.DataFrame,
    initial_capital: float,
    weights: Mapping[str, float],
) -> NetWorthState:
    first = closes.iloc[0]
    holdings = {
        code: (initial_capital * weight / first[code], float(first[code]))
        for code, weight in weights.items()
    }
    invested = initial_capital * sum(weights.values())
    return initial_state(closes.index[0], cash=initial_capital - invested, holdings=holdings)


def _simulate_portfolio(
    closes: pd.DataFrame,
    initial_capital: float,
    weights: Mapping[str, float],
    policies: Sequence,
    rate_source: RateSource | None,
) -> tuple[list[PricePoint], list[NetWorthState]]:
    """Run over the common dates, marking positions from the close table first."""
    calendar = [PricePoint(date=date) for date in closes.index]
    marks = QuoteUpdatePolicy({code: closes[code] for code in closes.columns})
    start = _portfolio_start(closes, initial_capital, weights)
    timeline = simulate(calendar, start, [marks, *policies], _rates(rate_source))
    return calendar, timeline


def run_buy_and_hold(
    price_map: Mapping[str, Sequence[PricePoint]],
    initial_capital: float = config.INITIAL_CAPITAL,
    weights: Mapping[str, float] = config.PORTFOLIO_WEIGHTS,
    rate_source: RateSource | None = None,
) -> ControlGroupResult:
    """
    Buy each instrument at its weight on the first common date and hold.

    Unallocated capital (weights summing below 1) stays in cash.
    """
    closes = _portfolio_closes(price_map, weights)
    if closes.empty:
        logger.warning("Buy and hold: instruments share no trading dates")
        return neutral_result(initial_capital)

    calendar, timeline = _simulate_portfolio(closes, initial_capital, weights, [], rate_source)
    base = aggregate(timeline, initial_capital, include_positions=True, include_cash=True)
    result = replace(base, yearly_details=attach_trades(base.yearly_details, [], calendar))
    _log_completion("Buy and hold", result)
    return result


def run_portfolio_rebalance(
    price_map: Mapping[str, Sequence[PricePoint]],
    initial_capital: float = config.INITIAL_CAPITAL,
    weights: Mapping[str, float] = config.PORTFOLIO_WEIGHTS,
    interval_months: int = config.PORTFOLIO_REBALANCE_MONTHS,
    rate_source: RateSource | None = None,
) -> ControlGroupResult:
    """Buy at the given weights and reset them every ``interval_months``."""
    closes = _portfolio_closes(price_map, weights)
    policy = FixedIntervalRebalancePolicy(weights, interval_months)
    if closes.empty:
        logger.warning("Portfolio rebalance: instruments share no trading dates")
        return neutral_result(initial_capital)

    calendar, timeline = _simulate_portfolio(
        closes, initial_capital, weights, [policy], rate_source
    )
    base = aggregate(timeline, initial_capital, include_positions=True, include_cash=True)
    result = replace(
        base,
        trades=list(policy.trades),
        yearly_details=attach_trades(base.yearly_details, policy.trades, calendar),
    )
    _log_completion("Portfolio rebalance", result)
    return result
