"""
Valuation Allocation Backtester
===============================
Single entry point. Runs the full pipeline end-to-end:

    1. Load price, valuation and bond-rate exports
    2. Run the valuation-driven strategies (P/E balance, ERP balance)
    3. Run the comparison strategies (fixed ratio, DCA, cash, portfolios)
    4. Generate all charts
    5. Generate and save text report

Flags
-----
RUN_ERP : bool
    Run the ERP strategy (needs the broad-market and fund exports).
RUN_PORTFOLIO : bool
    Run the multi-stock portfolios (needs one export per weighted stock
    under config.PORTFOLIO_DATA_DIR).

Usage:
    python main.py
"""

import logging
from pathlib import Path

import config
from src.data.series import load_price_csv, load_rate_csv
from src.strategy.strategies import (
    run_buy_and_hold,
    run_cash_baseline,
    run_dca,
    run_drift_balance,
    run_erp_balance,
    run_portfolio_rebalance,
    run_valuation_balance,
)
from src.visualization.charts import (
    plot_allocation,
    plot_drawdowns,
    plot_equity_curves,
    plot_yearly_returns,
)
from src.visualization.report import generate_report

# ── Pipeline flags ────────────────────────────────────────────────────────
RUN_ERP = True
RUN_PORTFOLIO = True

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _in_range(points):
    start, end = config.START_DATE, config.END_DATE
    return [p for p in points if start <= str(p.date.date()) <= end]


def main() -> None:
    logger.info("=" * 62)
    logger.info("  Valuation Allocation Backtester — Full Pipeline")
    logger.info("=" * 62)

    # ── 1. Data ──────────────────────────────────────────────────
    logger.info("[1/5] Loading data...")
    prices = _in_range(load_price_csv(config.PRICE_DATA_PATH))
    rates = load_rate_csv(config.RATE_DATA_PATH)
    logger.info("      %d trading days, %d months of bond rates", len(prices), len(rates))

    # ── 2. Valuation strategies ──────────────────────────────────
    logger.info("[2/5] Running valuation-driven strategies...")
    pe_result = run_valuation_balance(prices, rate_source=rates)
    results = {"P/E Balance": pe_result}

    erp_result = None
    fund_path = Path(config.FUND_DATA_PATH)
    broad_path = Path(config.BROAD_MARKET_DATA_PATH)
    if RUN_ERP and fund_path.exists() and broad_path.exists():
        erp_result = run_erp_balance(
            _in_range(load_price_csv(broad_path)),
            _in_range(load_price_csv(fund_path, valuation_column=None)),
            rate_source=rates,
        )
        results["ERP Balance"] = erp_result
    elif RUN_ERP:
        logger.warning("      ERP exports not found, skipping ERP strategy")

    # ── 3. Comparison strategies ─────────────────────────────────
    logger.info("[3/5] Running comparison strategies...")
    results["Fixed 50/50"] = run_drift_balance(prices, rate_source=rates)
    results["DCA"] = run_dca(prices, rate_source=rates)
    results["Cash"] = run_cash_baseline(
        prices[0].date if prices else config.START_DATE,
        prices[-1].date if prices else config.END_DATE,
        rate_source=rates,
    )

    if RUN_PORTFOLIO:
        directory = Path(config.PORTFOLIO_DATA_DIR)
        paths = {code: directory / f"{code}.csv" for code in config.PORTFOLIO_WEIGHTS}
        missing = [str(p) for p in paths.values() if not p.exists()]
        if missing:
            logger.warning("      Portfolio exports missing (%s), skipping", ", ".join(missing))
        else:
            price_map = {
                code: _in_range(load_price_csv(path, valuation_column=None))
                for code, path in paths.items()
            }
            results["Buy & Hold"] = run_buy_and_hold(price_map, rate_source=rates)
            results["Rebalanced Portfolio"] = run_portfolio_rebalance(price_map, rate_source=rates)

    # ── 4. Charts ────────────────────────────────────────────────
    logger.info("[4/5] Generating charts → %s", config.CHART_DIR)
    saved = [
        plot_equity_curves(results),
        plot_drawdowns(results),
        plot_yearly_returns(results),
        plot_allocation(pe_result, "P/E Balance", filename="allocation_pe.png"),
    ]
    if erp_result is not None:
        saved.append(plot_allocation(erp_result, "ERP Balance", filename="allocation_erp.png"))
    for p in saved:
        logger.info("      + %s", p.name)
    logger.info("      %d charts saved.", len(saved))

    # ── 5. Report ────────────────────────────────────────────────
    logger.info("[5/5] Generating report → %s", config.REPORT_PATH)
    generate_report(results)

    logger.info("Pipeline complete.")


if __name__ == "__main__":
    main()
