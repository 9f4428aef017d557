"""
Visualization module.

Equity curves, drawdowns, risk-asset allocation with trade markers, and
yearly returns. Daily series are downsampled before plotting with trade
days kept as key points. Charts are saved as PNGs to config.CHART_DIR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Union

import matplotlib

matplotlib.use("Agg")  # non-interactive backend
import matplotlib.pyplot as plt
import matplotlib.ticker as mtick
import numpy as np
import pandas as pd

import config
from src.engine.aggregator import ControlGroupResult, StrategyResult
from src.risk.metrics import drawdown_series
from src.visualization.downsample import downsample, shape_preserving_downsample

AnyResult = Union[ControlGroupResult, StrategyResult]

COLORS = {
    "buy": "#43A047",  # green
    "sell": "#E53935",  # red
    "allocation": "#1E88E5",
    "baseline": "#9E9E9E",
    "grid": "#E0E0E0",
}
PALETTE = ["#2196F3", "#FF9800", "#9C27B0", "#009688", "#795548", "#607D8B", "#E91E63"]


def _save(fig: plt.Figure, name: str, out_dir: str | Path | None = None) -> Path:
    directory = Path(out_dir if out_dir is not None else config.CHART_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    fig.savefig(path, dpi=config.CHART_DPI, bbox_inches="tight")
    plt.close(fig)
    return path


def _trade_days(result: AnyResult) -> set[pd.Timestamp]:
    return {t.date for t in result.trades}


def _reduced_curve(result: AnyResult, max_points: int) -> pd.Series:
    """Downsampled total value, trade days always kept."""
    trade_days = _trade_days(result)
    points = shape_preserving_downsample(
        result.daily_values,
        max_points=max_points,
        value_key="value",
        is_key_point=lambda d: d.date in trade_days,
    )
    return pd.Series([d.value for d in points], index=[d.date for d in points], dtype=float)


# ---------------------------------------------------------------------------
# 1. Equity curve comparison
# ---------------------------------------------------------------------------

def plot_equity_curves(
    results: Mapping[str, AnyResult],
    initial_capital: float = config.INITIAL_CAPITAL,
    filename: str = "equity_curves.png",
    max_points: int = config.CHART_MAX_POINTS,
    out_dir: str | Path | None = None,
) -> Path:
    """
    Plot net worth of several strategies, normalised to the starting capital.

    Parameters
    ----------
    results : mapping
        Strategy name → result. Results without daily values are skipped.
    initial_capital : float
        Normalisation baseline.
    filename : str
        Output file name.
    max_points : int
        Point budget per curve.
    """
    fig, ax = plt.subplots(figsize=(12, 6))

    for i, (name, result) in enumerate(results.items()):
        if not result.daily_values:
            continue
        curve = _reduced_curve(result, max_points) / initial_capital
        ax.plot(curve.index, curve, label=name, color=PALETTE[i % len(PALETTE)], linewidth=1.6)

    ax.axhline(1.0, color=COLORS["baseline"], linewidth=0.8, linestyle="--")
    ax.set_title("Net Worth (Normalised to 1.0)", fontsize=14, fontweight="bold")
    ax.set_ylabel("Net Worth (×)")
    ax.set_xlabel("Date")
    ax.yaxis.set_major_formatter(mtick.FuncFormatter(lambda x, _: f"{x:.1f}×"))
    if ax.get_legend_handles_labels()[0]:
        ax.legend(framealpha=0.9)
    ax.grid(color=COLORS["grid"], linewidth=0.5)
    fig.tight_layout()
    return _save(fig, filename, out_dir)


# ---------------------------------------------------------------------------
# 2. Drawdowns
# ---------------------------------------------------------------------------

def plot_drawdowns(
    results: Mapping[str, AnyResult],
    initial_capital: float = config.INITIAL_CAPITAL,
    filename: str = "drawdowns.png",
    max_points: int = config.CHART_MAX_POINTS,
    out_dir: str | Path | None = None,
) -> Path:
    """Underwater plot: percentage below the running peak for each strategy."""
    fig, ax = plt.subplots(figsize=(12, 5))

    for i, (name, result) in enumerate(results.items()):
        if not result.daily_values:
            continue
        values = [d.value for d in result.daily_values]
        dd = drawdown_series(values, initial_peak=initial_capital)
        rows = [
            {"date": d.date, "value": -float(x)}
            for d, x in zip(result.daily_values, dd)
        ]
        rows = shape_preserving_downsample(rows, max_points=max_points)
        dates = [r["date"] for r in rows]
        depth = np.array([r["value"] for r in rows])

        color = PALETTE[i % len(PALETTE)]
        ax.fill_between(dates, depth, 0, alpha=0.25, color=color)
        ax.plot(dates, depth, label=name, color=color, linewidth=1.2)

    ax.set_title("Drawdown from Peak", fontsize=14, fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel("Drawdown (%)")
    ax.yaxis.set_major_formatter(mtick.FuncFormatter(lambda x, _: f"{x:.0f}%"))
    if ax.get_legend_handles_labels()[0]:
        ax.legend(framealpha=0.9)
    ax.grid(color=COLORS["grid"], linewidth=0.5)
    fig.tight_layout()
    return _save(fig, filename, out_dir)


# ---------------------------------------------------------------------------
# 3. Allocation with trade markers
# ---------------------------------------------------------------------------

def plot_allocation(
    result: StrategyResult,
    strategy_name: str,
    filename: str = "allocation.png",
    max_points: int = config.CHART_MAX_POINTS,
    out_dir: str | Path | None = None,
) -> Path:
    """
    Risk-asset ratio over time with buy/sell markers on trade days.

    Parameters
    ----------
    result : StrategyResult
        Must carry daily allocation states.
    strategy_name : str
        Used in the chart title.
    """
    trade_days = _trade_days(result)
    states = downsample(
        result.daily_states,
        max_points=max_points,
        is_key_point=lambda s: s.date in trade_days,
    )

    fig, ax = plt.subplots(figsize=(12, 5))
    ax.step(
        [s.date for s in states],
        [s.risk_ratio for s in states],
        where="post",
        color=COLORS["allocation"],
        linewidth=1.4,
        label="Risk-asset ratio",
    )

    for kind in ("buy", "sell"):
        trades = [t for t in result.trades if t.kind == kind]
        if trades:
            ax.scatter(
                [t.date for t in trades],
                [t.target for t in trades],
                color=COLORS[kind],
                marker="^" if kind == "buy" else "v",
                s=60,
                zorder=3,
                label=kind.capitalize(),
            )

    ax.set_title(f"Allocation: {strategy_name}", fontsize=14, fontweight="bold")
    ax.set_xlabel("Date")
    ax.set_ylabel("Share of Net Worth")
    ax.yaxis.set_major_formatter(mtick.FuncFormatter(lambda x, _: f"{x:.0%}"))
    ax.set_ylim(0, 1)
    ax.legend(framealpha=0.9, loc="upper left")
    ax.grid(color=COLORS["grid"], linewidth=0.5)
    fig.tight_layout()
    return _save(fig, filename, out_dir)


# ---------------------------------------------------------------------------
# 4. Yearly returns
# ---------------------------------------------------------------------------

def plot_yearly_returns(
    results: Mapping[str, AnyResult],
    filename: str = "yearly_returns.png",
    out_dir: str | Path | None = None,
) -> Path:
    """Grouped bars of calendar-year returns per strategy."""
    table = pd.DataFrame(
        {
            name: pd.Series({d.year: d.return_pct for d in result.yearly_details}, dtype=float)
            for name, result in results.items()
        }
    ).sort_index()

    fig, ax = plt.subplots(figsize=(12, 5))
    if not table.empty:
        n = len(table.columns)
        width = 0.8 / max(n, 1)
        x = np.arange(len(table.index))
        for i, name in enumerate(table.columns):
            ax.bar(
                x + (i - (n - 1) / 2) * width,
                table[name].fillna(0.0),
                width=width,
                label=name,
                color=PALETTE[i % len(PALETTE)],
            )
        ax.set_xticks(x)
        ax.set_xticklabels([str(y) for y in table.index], rotation=45)
        ax.legend(framealpha=0.9, fontsize=8)

    ax.axhline(0, color=COLORS["baseline"], linewidth=0.8)
    ax.set_title("Calendar-Year Returns", fontsize=14, fontweight="bold")
    ax.set_ylabel("Return (%)")
    ax.yaxis.set_major_formatter(mtick.FuncFormatter(lambda x, _: f"{x:.0f}%"))
    ax.grid(axis="y", color=COLORS["grid"], linewidth=0.5)
    fig.tight_layout()
    return _save(fig, filename, out_dir)
