"""Tests for src/risk/metrics.py."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from src.risk.metrics import (
    annualized_return_pct,
    drawdown_series,
    elapsed_days,
    max_drawdown_pct,
    total_return_pct,
)


def _random_curve(n: int = 500, seed: int = 42) -> np.ndarray:
    np.random.seed(seed)
    return 1_000_000 * np.exp(np.cumsum(np.random.normal(0.0003, 0.01, n)))


class TestTotalReturn:
    def test_gain(self):
        assert total_return_pct(1_100_000, 1_000_000) == pytest.approx(10.0)

    def test_loss(self):
        assert total_return_pct(900_000, 1_000_000) == pytest.approx(-10.0)

    def test_zero_capital_returns_zero(self):
        assert total_return_pct(100.0, 0.0) == 0.0


class TestElapsedDays:
    def test_leap_year(self):
        assert elapsed_days(pd.Timestamp("2020-01-01"), pd.Timestamp("2021-01-01")) == 366

    def test_same_day(self):
        assert elapsed_days("2020-01-01", "2020-01-01") == 0


class TestAnnualizedReturn:
    def test_one_year_equals_total(self):
        assert annualized_return_pct(1_100_000, 1_000_000, 365) == pytest.approx(10.0)

    def test_two_years_compounds(self):
        ann = annualized_return_pct(1_210_000, 1_000_000, 730)
        assert ann == pytest.approx(10.0)

    def test_zero_days_returns_zero(self):
        assert annualized_return_pct(2_000_000, 1_000_000, 0) == 0.0

    def test_non_positive_capital_returns_zero(self):
        assert annualized_return_pct(2_000_000, 0.0, 365) == 0.0

    def test_total_loss(self):
        assert annualized_return_pct(0.0, 1_000_000, 365) == -100.0


class TestDrawdown:
    def test_monotonic_increase_has_no_drawdown(self):
        assert max_drawdown_pct([100, 110, 120, 130]) == 0.0

    def test_known_drawdown(self):
        assert max_drawdown_pct([100, 120, 90, 130, 117]) == pytest.approx(25.0)

    def test_initial_peak_counts(self):
        # Curve opens below capital: already 10% under water
        assert max_drawdown_pct([90, 95], initial_peak=100) == pytest.approx(10.0)

    def test_empty_returns_zero(self):
        assert max_drawdown_pct([]) == 0.0

    def test_series_matches_max(self):
        curve = _random_curve()
        dd = drawdown_series(curve)
        assert dd.shape == curve.shape
        assert (dd >= 0).all() and (dd < 100).all()
        assert max_drawdown_pct(curve) == pytest.approx(dd.max())

    def test_matches_bruteforce(self):
        curve = _random_curve(200, seed=7)
        brute = max(
            (curve[:i + 1].max() - curve[i]) / curve[:i + 1].max() * 100
            for i in range(len(curve))
        )
        assert max_drawdown_pct(curve) == pytest.approx(brute)
