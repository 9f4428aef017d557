"""
Central configuration for the allocation backtester.
Every tunable parameter lives here; library functions take them as defaults.
"""

# ──────────────────────────────────────────────
# Instruments
# ──────────────────────────────────────────────
VALUATION_INDEX = "000300"     # CSI 300 index: P/E signal source
TRACKING_FUND = "000300.FUND"  # fund actually bought and sold

# ──────────────────────────────────────────────
# Data
# ──────────────────────────────────────────────
START_DATE = "2005-01-01"
END_DATE = "2025-12-31"
PRICE_DATA_PATH = "data/csi300.csv"
FUND_DATA_PATH = "data/csi300_fund.csv"
BROAD_MARKET_DATA_PATH = "data/all_share.csv"
RATE_DATA_PATH = "data/national_debt.csv"
PORTFOLIO_DATA_DIR = "data/stocks"

# Column names in the price/valuation CSV exports
DATE_COLUMN = "date"
CLOSE_COLUMN = "cp"
VALUATION_COLUMN = "pe_ttm.mcw"
MARKET_CAP_COLUMN = "mc"
RATE_COLUMN = "tcm_y10"

# ──────────────────────────────────────────────
# Simulation
# ──────────────────────────────────────────────
INITIAL_CAPITAL = 1_000_000    # 1M starting portfolio
DEFAULT_ANNUAL_RATE = 0.03     # bond rate used when no rate data exists
INVARIANT_TOLERANCE = 1e-2     # currency units

# ──────────────────────────────────────────────
# P/E balance
# ──────────────────────────────────────────────
PE_LOW = 11.0                  # P/E at or below → max stock ratio
PE_HIGH = 16.0                 # P/E at or above → min stock ratio
MIN_STOCK_RATIO = 0.1
MAX_STOCK_RATIO = 0.6
POSITION_LEVELS = 6
REVIEW_INTERVAL_MONTHS = 6
REBALANCE_DEADBAND = 0.01      # ignore ratio changes smaller than 1pp

# ──────────────────────────────────────────────
# ERP balance
# ──────────────────────────────────────────────
ERP_LOW = 1.0                  # ERP (%) at or below → min stock ratio
ERP_HIGH = 4.0                 # ERP (%) at or above → max stock ratio
ERP_MIN_STOCK_RATIO = 0.2
ERP_MAX_STOCK_RATIO = 0.8

# ──────────────────────────────────────────────
# Fixed-ratio balance
# ──────────────────────────────────────────────
FIXED_STOCK_RATIO = 0.5
DRIFT_THRESHOLD = 0.1          # rebalance when weight drifts > 10pp

# ──────────────────────────────────────────────
# Control groups
# ──────────────────────────────────────────────
DCA_MONTHS = 48                # 4 years of monthly contributions

# ──────────────────────────────────────────────
# Stock portfolio
# ──────────────────────────────────────────────
PORTFOLIO_WEIGHTS = {
    "600036": 0.30,   # China Merchants Bank
    "601988": 0.20,   # Bank of China
    "600900": 0.30,   # China Yangtze Power
}
PORTFOLIO_REBALANCE_MONTHS = 3

# ──────────────────────────────────────────────
# Output
# ──────────────────────────────────────────────
CHART_MAX_POINTS = 200
CHART_DIR = "output/charts"
REPORT_PATH = "output/report.txt"
CHART_DPI = 300
