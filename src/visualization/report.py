"""
Summary report generator.

Prints and saves a text report covering: headline metrics per strategy,
the calendar-year breakdown of each, and the trade log of signal-driven
strategies.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Union

import config
from src.engine.aggregator import ControlGroupResult, StrategyResult, YearlyDetail

SEP = "=" * 72
SEP2 = "-" * 72


def _fmt_optional(value: float | None, fmt: str = ">12,.0f") -> str:
    if value is None:
        return f"{'—':>12}"
    return format(value, fmt)


def _yearly_rows(details: list[YearlyDetail]) -> list[str]:
    rows = [
        f"  {'Year':<6}{'Start':>14}{'End':>14}{'Return':>9}"
        f"{'Interest':>12}{'Invested':>12}{'Trades':>7}",
        f"  {'─' * 6}{'─' * 14}{'─' * 14}{'─' * 9}{'─' * 12}{'─' * 12}{'─' * 7}",
    ]
    for d in details:
        rows.append(
            f"  {d.year:<6}{d.start_value:>14,.0f}{d.end_value:>14,.0f}"
            f"{d.return_pct:>8.2f}%"
            f"{_fmt_optional(d.cash_interest)}"
            f"{_fmt_optional(d.invested_amount)}"
            f"{d.trade_count:>7}"
        )
    return rows


def generate_report(
    results: Mapping[str, Union[ControlGroupResult, StrategyResult]],
    initial_capital: float = config.INITIAL_CAPITAL,
    write_file: bool = True,
    path: str | Path | None = None,
) -> str:
    """
    Generate the text report.

    Parameters
    ----------
    results : mapping
        Strategy name → result.
    initial_capital : float
        Shown in the header.
    write_file : bool
        If True, save to ``path`` (default config.REPORT_PATH).

    Returns
    -------
    str
        Full report text.
    """
    lines: list[str] = []

    def add(text: str = "") -> None:
        lines.append(text)

    add(SEP)
    add("  VALUATION ALLOCATION BACKTEST — REPORT")
    add(SEP)
    dated = [r for r in results.values() if r.daily_values]
    if dated:
        start = min(r.daily_values[0].date for r in dated)
        end = max(r.daily_values[-1].date for r in dated)
        add(f"  Date range: {start.date()} → {end.date()}")
    add(f"  Initial capital: {initial_capital:,.0f}")
    add()

    # ── Headline metrics ──
    add(SEP)
    add("  SUMMARY BY STRATEGY")
    add(SEP)

    for name, result in results.items():
        add()
        add(f"  ┌─ {name} " + "─" * max(0, 56 - len(name)) + "┐")
        add(f"  │  Final Value:          {result.final_value:>14,.2f}")
        add(f"  │  Total Return:         {result.total_return:>13.2f}%")
        add(f"  │  Annualised Return:    {result.annualized_return:>13.2f}%")
        add(f"  │  Max Drawdown:         {result.max_drawdown:>13.2f}%")
        if isinstance(result, StrategyResult):
            add(f"  │  Final Stock Ratio:    {result.final_risk_ratio * 100:>13.2f}%")
        add(f"  │  Trades:               {len(result.trades):>14d}")
        add("  └" + "─" * 60 + "┘")

    # ── Yearly breakdown ──
    for name, result in results.items():
        if not result.yearly_details:
            continue
        add()
        add(SEP)
        add(f"  YEARLY BREAKDOWN — {name}")
        add(SEP)
        add()
        lines.extend(_yearly_rows(result.yearly_details))

    # ── Trade logs ──
    for name, result in results.items():
        if not isinstance(result, StrategyResult) or not result.trades:
            continue
        add()
        add(SEP)
        add(f"  TRADES — {name}")
        add(SEP)
        add()
        add(f"  {'Date':<12}{'Kind':<8}{'Target':>9}{'Signal':>10}{'Stock Δ':>16}")
        add(f"  {'─' * 12}{'─' * 8}{'─' * 9}{'─' * 10}{'─' * 16}")
        for t in result.trades:
            signal = f"{t.signal:>10.2f}" if t.signal is not None else f"{'—':>10}"
            add(
                f"  {str(t.date.date()):<12}{t.kind:<8}{t.target * 100:>8.1f}%"
                f"{signal}{t.risk_value_change:>16,.0f}"
            )

    add()
    add(SEP2)

    text = "\n".join(lines)
    print(text)

    if write_file:
        report_path = Path(path if path is not None else config.REPORT_PATH)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(text, encoding="utf-8")
        print(f"\n  Report saved → {report_path}")

    return text
