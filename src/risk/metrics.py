"""
Performance metrics over a net-worth curve.

Total return, annualized return and maximum drawdown, all expressed in
percent. Every function guards zero or negative denominators and returns 0
instead of NaN/inf.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

DAYS_PER_YEAR = 365


def total_return_pct(final_value: float, initial_capital: float) -> float:
    """(final / initial - 1) * 100."""
    if initial_capital <= 0:
        return 0.0
    return (final_value / initial_capital - 1.0) * 100


def elapsed_days(start: pd.Timestamp, end: pd.Timestamp) -> int:
    """Whole calendar days from start to end."""
    return int((pd.Timestamp(end) - pd.Timestamp(start)).days)


def annualized_return_pct(
    final_value: float,
    initial_capital: float,
    days: int,
) -> float:
    """
    Compound annualized return: ((final / initial) ^ (365 / days) - 1) * 100.

    Returns 0 when fewer than one day has elapsed or the initial capital is
    not positive, and -100 when everything was lost.
    """
    if days <= 0 or initial_capital <= 0:
        return 0.0
    growth = final_value / initial_capital
    if growth <= 0:
        return -100.0
    return float(growth ** (DAYS_PER_YEAR / days) - 1.0) * 100


def drawdown_series(
    values: Sequence[float] | np.ndarray,
    initial_peak: float | None = None,
) -> np.ndarray:
    """
    Percentage below the running peak at each point (positive numbers).

    The running peak starts at ``initial_peak`` when given, so a curve that
    opens below its starting capital is already in drawdown.
    """
    equity = np.asarray(values, dtype=float)
    if equity.size == 0:
        return equity
    peak = np.maximum.accumulate(equity)
    if initial_peak is not None:
        peak = np.maximum(peak, initial_peak)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peak > 0, (peak - equity) / peak * 100, 0.0)
    return dd


def max_drawdown_pct(
    values: Sequence[float] | np.ndarray,
    initial_peak: float | None = None,
) -> float:
    """
    Maximum peak-to-trough decline in percent (0 = never below the peak).

    Computed in one pass with a running maximum.
    """
    dd = drawdown_series(values, initial_peak)
    if dd.size == 0:
        return 0.0
    return float(dd.max())
