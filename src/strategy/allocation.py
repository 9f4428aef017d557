"""
Valuation signal → target allocation.

Maps a valuation signal (P/E, equity risk premium) onto a continuous
risk-asset ratio by linear interpolation between two bounds, then snaps it
to one of a small number of equally spaced allocation levels.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import config


@dataclass(frozen=True)
class AllocationParams:
    """
    Bounds and discretization for a signal-driven allocation.

    Attributes
    ----------
    min_ratio, max_ratio : float
        Lowest and highest risk-asset ratio (0-1).
    low_bound, high_bound : float
        Signal values where the ratio reaches its extremes.
    levels : int
        Number of allowed ratios, evenly spaced from min_ratio to max_ratio.
    inverted : bool
        True when a *low* signal means a *high* ratio (P/E). False when a
        high signal means a high ratio (ERP).
    """

    min_ratio: float = config.MIN_STOCK_RATIO
    max_ratio: float = config.MAX_STOCK_RATIO
    low_bound: float = config.PE_LOW
    high_bound: float = config.PE_HIGH
    levels: int = config.POSITION_LEVELS
    inverted: bool = True

    def __post_init__(self):
        if not 0.0 <= self.min_ratio <= self.max_ratio <= 1.0:
            raise ValueError(
                f"Ratios must satisfy 0 <= min_ratio <= max_ratio <= 1, "
                f"got min_ratio={self.min_ratio}, max_ratio={self.max_ratio}"
            )
        if self.low_bound >= self.high_bound:
            raise ValueError(
                f"low_bound must be below high_bound, "
                f"got {self.low_bound} >= {self.high_bound}"
            )
        if self.levels < 2:
            raise ValueError(f"levels must be at least 2, got {self.levels}")


def pe_params(
    min_ratio: float = config.MIN_STOCK_RATIO,
    max_ratio: float = config.MAX_STOCK_RATIO,
    pe_low: float = config.PE_LOW,
    pe_high: float = config.PE_HIGH,
    levels: int = config.POSITION_LEVELS,
) -> AllocationParams:
    """Parameters for a P/E-driven (inverted) allocation."""
    return AllocationParams(min_ratio, max_ratio, pe_low, pe_high, levels, inverted=True)


def erp_params(
    min_ratio: float = config.ERP_MIN_STOCK_RATIO,
    max_ratio: float = config.ERP_MAX_STOCK_RATIO,
    erp_low: float = config.ERP_LOW,
    erp_high: float = config.ERP_HIGH,
    levels: int = config.POSITION_LEVELS,
) -> AllocationParams:
    """Parameters for an ERP-driven (direct) allocation."""
    return AllocationParams(min_ratio, max_ratio, erp_low, erp_high, levels, inverted=False)


def ratio_levels(params: AllocationParams) -> list[float]:
    """All ratios ``target_ratio`` can return, ascending."""
    step = (params.max_ratio - params.min_ratio) / (params.levels - 1)
    inner = [params.min_ratio + i * step for i in range(params.levels - 1)]
    return inner + [params.max_ratio]


def continuous_ratio(signal: float, params: AllocationParams) -> float:
    """Linear interpolation between the bounds, clamped to [min_ratio, max_ratio]."""
    lo, hi = params.low_bound, params.high_bound
    span = params.max_ratio - params.min_ratio

    if signal <= lo:
        return params.max_ratio if params.inverted else params.min_ratio
    if signal >= hi:
        return params.min_ratio if params.inverted else params.max_ratio

    fraction = (signal - lo) / (hi - lo)
    if params.inverted:
        ratio = params.max_ratio - fraction * span
    else:
        ratio = params.min_ratio + fraction * span
    return max(params.min_ratio, min(params.max_ratio, ratio))


def _round_half_away(x: float) -> int:
    return int(math.floor(abs(x) + 0.5)) * (1 if x >= 0 else -1)


def target_ratio(signal: float, params: AllocationParams) -> float:
    """
    Discretized risk-asset ratio for a signal value.

    With two levels the ratio is a switch at the midpoint of the range.
    Otherwise the continuous ratio snaps to the nearest level, ties rounding
    away from zero.
    """
    ratio = continuous_ratio(signal, params)
    levels = ratio_levels(params)

    if params.levels == 2:
        midpoint = (params.min_ratio + params.max_ratio) / 2
        return levels[0] if ratio < midpoint else levels[-1]

    span = params.max_ratio - params.min_ratio
    if span == 0:
        return levels[0]
    step = span / (params.levels - 1)
    index = _round_half_away((ratio - params.min_ratio) / step)
    index = max(0, min(params.levels - 1, index))
    return levels[index]


def pe_target_ratio(pe: float, params: AllocationParams | None = None) -> float:
    """Target stock ratio for a P/E reading (cheaper market → more stock)."""
    return target_ratio(pe, params if params is not None else pe_params())


def equity_risk_premium(pe: float | None, annual_rate: float | None) -> float | None:
    """
    Equity risk premium in percent: earnings yield minus the bond rate.

    ``annual_rate`` is a decimal (0.03 = 3%). Returns None when the P/E is
    missing or non-positive, or the rate is missing.
    """
    if pe is None or annual_rate is None or pe <= 0:
        return None
    return 100.0 / pe - 100.0 * annual_rate


def erp_target_ratio(erp: float, params: AllocationParams | None = None) -> float:
    """Target stock ratio for an ERP reading (higher premium → more stock)."""
    return target_ratio(erp, params if params is not None else erp_params())
