"""Tests for the risk metric calculations."""

from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from quantfolio.analytics import risk


# ---------------------------------------------------------------------------
# Drawdown
# ---------------------------------------------------------------------------


class TestMaxDrawdown:
    def test_peak_to_valley(self):
        assert risk.max_drawdown([100, 120, 80, 110]) == pytest.approx(1 / 3)

    def test_monotonic_increase_has_no_drawdown(self):
        assert risk.max_drawdown([100, 101, 105, 110]) == 0.0

    def test_single_value(self):
        assert risk.max_drawdown([100]) == 0.0

    def test_equity_curve_starts_at_start(self):
        curve = risk.equity_curve([0.1, -0.5], start=100.0)
        np.testing.assert_allclose(curve, [100.0, 110.0, 55.0])


# ---------------------------------------------------------------------------
# Volatility, Sharpe, Sortino
# ---------------------------------------------------------------------------


class TestRatios:
    returns = [0.01, -0.01, 0.02, 0.0]

    def test_volatility_population_std(self):
        expected = np.std(self.returns) * math.sqrt(252)
        assert risk.volatility(self.returns) == pytest.approx(expected)

    def test_constant_returns_have_zero_volatility(self):
        assert risk.volatility([0.001] * 10) == pytest.approx(0.0, abs=1e-15)
        assert risk.sharpe_ratio([0.0] * 10) == 0.0

    def test_sharpe(self):
        r = np.array(self.returns)
        expected = (r.mean() * 252 - 0.045) / (r.std() * math.sqrt(252))
        assert risk.sharpe_ratio(r) == pytest.approx(expected)

    def test_sharpe_custom_risk_free_rate(self):
        r = np.array(self.returns)
        expected = (r.mean() * 252) / (r.std() * math.sqrt(252))
        assert risk.sharpe_ratio(r, risk_free_rate=0.0) == pytest.approx(expected)

    def test_single_return_gives_zero(self):
        assert risk.sharpe_ratio([0.05]) == 0.0
        assert risk.sortino_ratio([-0.05]) == 0.0
        assert risk.volatility([0.05]) == 0.0

    def test_downside_deviation(self):
        # Only -0.01 is below zero: sqrt(0.0001 / 1) annualised.
        assert risk.downside_deviation(self.returns) == pytest.approx(0.01 * math.sqrt(252))

    def test_sortino(self):
        r = np.array(self.returns)
        expected = (r.mean() * 252 - 0.045) / (0.01 * math.sqrt(252))
        assert risk.sortino_ratio(r) == pytest.approx(expected)

    def test_sortino_without_losses_is_zero(self):
        assert risk.sortino_ratio([0.01, 0.02, 0.03]) == 0.0

    def test_nan_values_ignored(self):
        assert risk.volatility([0.01, math.nan, -0.01]) == pytest.approx(0.01 * math.sqrt(252))


# ---------------------------------------------------------------------------
# Beta
# ---------------------------------------------------------------------------


class TestBeta:
    def test_scaled_series(self):
        market = [0.01, -0.02, 0.015, 0.003, -0.007]
        assert risk.beta([2 * m for m in market], market) == pytest.approx(2.0)

    def test_longer_series_is_truncated(self):
        market = [0.01, -0.02, 0.015]
        portfolio = [0.02, -0.04, 0.03, 0.5, -0.9]
        assert risk.beta(portfolio, market) == pytest.approx(2.0)

    def test_zero_market_variance(self):
        assert risk.beta([0.01, 0.02, 0.03], [0.25, 0.25, 0.25]) == 0.0

    def test_too_little_overlap(self):
        assert risk.beta([0.01, 0.02], [0.01]) == 0.0


# ---------------------------------------------------------------------------
# Percentiles and tail risk
# ---------------------------------------------------------------------------


class TestPercentiles:
    def test_linear_interpolation(self):
        values = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        assert risk.percentile(values, 50) == 3.0
        assert risk.percentile(values, 25) == 2.0
        assert risk.percentile(values, 10) == pytest.approx(1.4)
        assert risk.percentile(values, 100) == 5.0

    def test_column_wise(self):
        sorted_values = np.array([[1.0, 10.0], [3.0, 30.0]])
        out = risk.interpolate_percentiles(sorted_values, [50])
        np.testing.assert_allclose(out, [[2.0, 20.0]])

    def test_empty(self):
        assert risk.percentile([], 50) == 0.0


class TestValueAtRisk:
    # -0.99, -0.98, ..., 0.00 once sorted
    returns = [-0.01 * i for i in range(100)]

    def test_var_95(self):
        assert risk.historical_var(self.returns, 0.95) == pytest.approx(0.94)

    def test_var_99(self):
        assert risk.historical_var(self.returns, 0.99) == pytest.approx(0.98)

    def test_cvar_95_averages_the_tail(self):
        assert risk.historical_cvar(self.returns, 0.95) == pytest.approx(0.965)

    def test_cvar_at_least_var(self):
        rng = np.random.default_rng(3)
        r = rng.normal(0.0005, 0.01, size=500)
        assert risk.historical_cvar(r) >= risk.historical_var(r)

    def test_too_short(self):
        assert risk.historical_var([-0.1]) == 0.0
        assert risk.historical_cvar([-0.1]) == 0.0

    def test_tail_index_exact_boundaries(self):
        assert risk.tail_index(100, 0.95) == 5
        assert risk.tail_index(20, 0.95) == 1
        assert risk.tail_index(3, 0.99) == 0


# ---------------------------------------------------------------------------
# Rolling volatility
# ---------------------------------------------------------------------------


class TestRollingVolatility:
    def test_window_alignment(self, make_series):
        closes = [100.0 * (1.01 if i % 2 else 0.99) ** i for i in range(40)]
        series = make_series("A", closes)
        rolled = risk.rolling_volatility(series, window=10)
        # 39 returns, first complete window ends at return #10.
        assert len(rolled) == 30
        assert rolled.index[0] == series.to_series().index[10]
        assert (rolled > 0).all()

    def test_window_includes_return_into_its_date(self, make_series):
        closes = [100.0, 101.0, 99.0, 102.0, 104.0, 103.0]
        rolled = risk.rolling_volatility(make_series("A", closes), window=3)
        first_rets = np.array([101.0 / 100.0, 99.0 / 101.0, 102.0 / 99.0]) - 1.0
        assert rolled.iloc[0] == pytest.approx(first_rets.std() * math.sqrt(252))
        assert len(rolled) == 3

    def test_constant_growth_is_flat(self, make_series):
        series = make_series("A", [100.0 * 1.002 ** i for i in range(40)])
        rolled = risk.rolling_volatility(series.to_series(), window=5)
        np.testing.assert_allclose(rolled.to_numpy(), 0.0, atol=1e-12)

    def test_history_shorter_than_window(self, make_series):
        assert risk.rolling_volatility(make_series("A", [1.0, 2.0, 3.0]), window=30).empty

    def test_window_too_small(self):
        with pytest.raises(ValueError):
            risk.rolling_volatility(pd.Series([1.0, 2.0]), window=1)


# ---------------------------------------------------------------------------
# compute_risk_metrics
# ---------------------------------------------------------------------------


class TestComputeRiskMetrics:
    def test_without_benchmark(self):
        r = [0.01, -0.02, 0.015, 0.003, -0.007]
        m = risk.compute_risk_metrics(r)
        assert m.beta is None
        assert m.observations == 5
        assert m.annualized_volatility == pytest.approx(risk.volatility(r))
        assert m.max_drawdown == pytest.approx(risk.max_drawdown(risk.equity_curve(r)))
        assert m.value_at_risk_99 >= 0

    def test_with_benchmark(self):
        market = [0.01, -0.02, 0.015, 0.003, -0.007]
        m = risk.compute_risk_metrics([0.5 * x for x in market], benchmark_returns=market)
        assert m.beta == pytest.approx(0.5)

    def test_risk_free_rate_override(self):
        r = [0.01, -0.02, 0.015, 0.003, -0.007]
        assert risk.compute_risk_metrics(r, risk_free_rate=0.0).sharpe_ratio == pytest.approx(
            risk.sharpe_ratio(r, 0.0)
        )

    def test_empty_series_is_all_zero(self):
        m = risk.compute_risk_metrics([])
        assert m.annualized_return == 0.0
        assert m.sharpe_ratio == 0.0
        assert m.max_drawdown == 0.0
        assert m.to_dict()["observations"] == 0
