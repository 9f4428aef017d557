"""
Price/valuation series preparation.

Converts tabular exports into PricePoint sequences, aligns several
instruments to their common trading dates, and extracts signal series.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

import pandas as pd

import config
from src.data.rates import RateSource
from src.engine.backtest import PricePoint


def _optional(value) -> float | None:
    if value is None or pd.isna(value):
        return None
    return float(value)


def price_points_from_frame(
    frame: pd.DataFrame,
    date_column: str = config.DATE_COLUMN,
    close_column: str = config.CLOSE_COLUMN,
    valuation_column: str | None = config.VALUATION_COLUMN,
    market_cap_column: str | None = config.MARKET_CAP_COLUMN,
) -> list[PricePoint]:
    """
    Convert a DataFrame into date-ascending PricePoints.

    Rows are sorted by date and duplicate dates keep their last row.
    Valuation and market-cap columns are optional; absent columns yield
    None fields.

    Parameters
    ----------
    frame : pd.DataFrame
        Must contain ``date_column`` and ``close_column``.

    Returns
    -------
    list[PricePoint]
    """
    missing = {date_column, close_column} - set(frame.columns)
    if missing:
        raise ValueError(f"Price frame is missing columns: {sorted(missing)}")
    if frame.empty:
        return []

    df = frame.copy()
    df[date_column] = pd.to_datetime(df[date_column])
    df = df.sort_values(date_column, kind="mergesort").drop_duplicates(subset=date_column, keep="last")

    has_valuation = valuation_column is not None and valuation_column in df.columns
    has_cap = market_cap_column is not None and market_cap_column in df.columns

    points = []
    # to_dict keeps column names such as "pe_ttm.mcw" intact
    for values in df.to_dict("records"):
        points.append(
            PricePoint(
                date=pd.Timestamp(values[date_column]),
                close_price=_optional(values[close_column]),
                valuation=_optional(values[valuation_column]) if has_valuation else None,
                market_cap=_optional(values[market_cap_column]) if has_cap else None,
            )
        )
    return points


def load_price_csv(path: str | Path, **columns) -> list[PricePoint]:
    """Read a price/valuation CSV export into PricePoints."""
    frame = pd.read_csv(path)
    return price_points_from_frame(frame, **columns)


def load_rate_csv(
    path: str | Path,
    date_column: str = config.DATE_COLUMN,
    rate_column: str = config.RATE_COLUMN,
) -> RateSource:
    """Read a bond-rate CSV export into a RateSource."""
    frame = pd.read_csv(path)
    return RateSource.from_frame(frame, date_column=date_column, rate_column=rate_column)


def close_table(
    price_map: Mapping[str, Sequence[PricePoint]],
) -> pd.DataFrame:
    """
    Closes of several instruments on the dates all of them traded.

    One column per instrument, indexed by date in ascending order. Dates
    where an instrument has no positive close are dropped.
    """
    if not price_map:
        return pd.DataFrame()

    closes = pd.DataFrame(
        {
            code: pd.Series(
                {
                    p.date: p.close_price
                    for p in points
                    if p.close_price is not None and p.close_price > 0
                },
                dtype=float,
            )
            for code, points in price_map.items()
        }
    )
    return closes.dropna().sort_index()


def signal_series(points: Sequence[PricePoint]) -> pd.Series:
    """Valuation metric indexed by date, missing values dropped."""
    return pd.Series(
        {p.date: p.valuation for p in points if p.valuation is not None},
        dtype=float,
    )


def calendar_days(start: pd.Timestamp | str, end: pd.Timestamp | str) -> list[PricePoint]:
    """One quote-less observation for every calendar day in [start, end]."""
    return [PricePoint(date=d) for d in pd.date_range(start, end, freq="D")]
