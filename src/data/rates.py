"""
Interest-rate source.

Looks up the annual bond rate for a date by calendar month and converts it
to the monthly rate credited on cash. Missing months fall back to the
nearest earlier month, then the nearest later month, then a fixed default.
"""

from __future__ import annotations

import bisect
import logging
from typing import Iterable

import pandas as pd

import config
from src.engine.backtest import RatePoint

logger = logging.getLogger(__name__)


class RateSource:
    """
    Monthly-granularity interest rates for a simulation run.

    Parameters
    ----------
    points : iterable of RatePoint
        Rate observations. Several points in one month collapse to the last
        one seen.
    default_rate : float
        Annual rate used when no observations exist at all.
    """

    def __init__(
        self,
        points: Iterable[RatePoint] = (),
        default_rate: float = config.DEFAULT_ANNUAL_RATE,
    ):
        self.default_rate = default_rate
        by_month: dict[pd.Period, float] = {}
        for point in points:
            if point.annual_rate is None or pd.isna(point.annual_rate):
                continue
            by_month[pd.Timestamp(point.date).to_period("M")] = float(point.annual_rate)
        self._months = sorted(by_month)
        self._rates = [by_month[m] for m in self._months]
        self._by_month = by_month

    @classmethod
    def constant(cls, annual_rate: float) -> RateSource:
        """A source quoting the same rate for every date."""
        return cls(points=(), default_rate=annual_rate)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        date_column: str = config.DATE_COLUMN,
        rate_column: str = config.RATE_COLUMN,
        default_rate: float = config.DEFAULT_ANNUAL_RATE,
    ) -> RateSource:
        """Build from a DataFrame with a date column and an annual-rate column."""
        missing = {date_column, rate_column} - set(frame.columns)
        if missing:
            raise ValueError(f"Rate frame is missing columns: {sorted(missing)}")
        points = [
            RatePoint(date=pd.Timestamp(d), annual_rate=r)
            for d, r in zip(frame[date_column], frame[rate_column])
        ]
        return cls(points, default_rate=default_rate)

    def __len__(self) -> int:
        return len(self._months)

    def annual_rate(self, date: pd.Timestamp | str) -> float:
        """Annual rate in effect for the calendar month of ``date``."""
        month = pd.Timestamp(date).to_period("M")
        rate = self._by_month.get(month)
        if rate is not None:
            return rate

        if not self._months:
            return self.default_rate

        # Nearest earlier month first, otherwise the earliest month on record
        i = bisect.bisect_left(self._months, month)
        if i > 0:
            return self._rates[i - 1]
        logger.warning(
            "No rate on or before %s; using first available month %s",
            month,
            self._months[0],
        )
        return self._rates[0]

    def monthly_rate(self, date: pd.Timestamp | str) -> float:
        """Rate credited on cash for one month."""
        return self.annual_rate(date) / 12

    def monthly_interest(self, date: pd.Timestamp | str, cash: float) -> float:
        return cash * self.monthly_rate(date)
