"""Tests for the backtesting engine.

Most tests use the hand-checkable ``two_asset_prices`` fixture; the longer
``random_walk_prices`` history exercises rebalancing schedules and the
benchmark comparison.
"""

from __future__ import annotations

from datetime import date

import pytest

from quantfolio.api import run_backtest
from quantfolio.backtest.runner import BacktestConfig, BacktestRunner
from quantfolio.errors import DataUnavailableError, InsufficientDataError, ValidationError
from quantfolio.models import PriceSeries
from quantfolio.providers.memory import InMemoryPriceProvider


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(**overrides) -> BacktestConfig:
    params = dict(
        tickers=["A", "B"],
        allocation={"A": 0.6, "B": 0.4},
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        initial_capital=10_000.0,
        rebalancing_frequency="none",
        benchmark_ticker=None,
    )
    params.update(overrides)
    return BacktestConfig(**params)


def _long_config(**overrides) -> BacktestConfig:
    params = dict(
        tickers=["GROW", "BOND"],
        allocation={"GROW": 0.7, "BOND": 0.3},
        start_date=date(2023, 1, 1),
        end_date=date(2024, 12, 31),
        benchmark_ticker=None,
    )
    params.update(overrides)
    return BacktestConfig(**params)


# ---------------------------------------------------------------------------
# Worked example
# ---------------------------------------------------------------------------


class TestTwoAssetExample:
    def test_opening_shares_and_final_value(self, two_asset_prices):
        result = run_backtest(_config(), InMemoryPriceProvider(two_asset_prices))

        first = result.snapshots[0]
        assert first.shares("A") == pytest.approx(60.0)
        assert first.shares("B") == pytest.approx(80.0)
        assert first.total_value == pytest.approx(10_000.0)

        assert result.metrics.final_value == pytest.approx(10_460.0)
        assert result.metrics.total_return == pytest.approx(0.046)
        assert result.metrics.trading_days == 4

    def test_daily_values(self, two_asset_prices):
        result = run_backtest(_config(), InMemoryPriceProvider(two_asset_prices))
        values = [s.total_value for s in result.snapshots]
        # 60 * A + 80 * B on each day
        assert values == pytest.approx([10_000.0, 10_040.0, 10_140.0, 10_460.0])
        assert [s.date for s in result.snapshots] == two_asset_prices["A"].dates

    def test_holdings_values_sum_to_total(self, two_asset_prices):
        result = run_backtest(_config(), InMemoryPriceProvider(two_asset_prices))
        for snap in result.snapshots:
            assert sum(h.value for h in snap.holdings.values()) == pytest.approx(snap.total_value)

    def test_each_ticker_looked_up_once(self, two_asset_prices):
        provider = InMemoryPriceProvider(two_asset_prices)
        run_backtest(_config(), provider)
        assert [t for t, _ in provider.calls] == ["A", "B"]


# ---------------------------------------------------------------------------
# Rebalancing
# ---------------------------------------------------------------------------


class TestRebalancing:
    def test_buy_and_hold_keeps_share_counts(self, price_provider):
        result = run_backtest(_long_config(rebalancing_frequency="none"), price_provider)
        first = result.snapshots[0]
        for snap in result.snapshots:
            assert snap.shares("GROW") == first.shares("GROW")
            assert snap.shares("BOND") == first.shares("BOND")
            assert not snap.rebalanced

    def test_first_day_is_not_a_rebalance(self, price_provider):
        result = run_backtest(_long_config(rebalancing_frequency="monthly"), price_provider)
        assert not result.snapshots[0].rebalanced

    def test_monthly_schedule(self, price_provider):
        result = run_backtest(_long_config(rebalancing_frequency="monthly"), price_provider)
        rebalance_days = [s.date for s in result.snapshots if s.rebalanced]
        # First trading day is 2023-01-03; 30 calendar days later is 2023-02-02.
        assert rebalance_days[0] == date(2023, 2, 2)
        for prev, cur in zip(rebalance_days, rebalance_days[1:]):
            assert (cur - prev).days >= 30

    @pytest.mark.parametrize("frequency,interval", [
        ("monthly", 30),
        ("quarterly", 90),
        ("annually", 365),
    ])
    def test_rebalance_restores_target_weights(self, price_provider, frequency, interval):
        result = run_backtest(_long_config(rebalancing_frequency=frequency), price_provider)
        rebalanced = [s for s in result.snapshots if s.rebalanced]
        assert rebalanced
        assert len(rebalanced) <= (result.snapshots[-1].date - result.snapshots[0].date).days // interval
        for snap in rebalanced:
            assert snap.holdings["GROW"].value / snap.total_value == pytest.approx(0.7)
            assert snap.holdings["BOND"].value / snap.total_value == pytest.approx(0.3)

    def test_rebalance_preserves_value(self, price_provider):
        result = run_backtest(_long_config(rebalancing_frequency="quarterly"), price_provider)
        for snap in result.snapshots:
            if snap.rebalanced:
                assert sum(h.value for h in snap.holdings.values()) == pytest.approx(snap.total_value)

    @pytest.mark.parametrize("frequency", ["monthly", "quarterly", "annually", "none"])
    def test_flat_prices_give_flat_metrics(self, make_series, frequency):
        provider = InMemoryPriceProvider([
            make_series("A", [100.0] * 400, start="2023-01-02"),
            make_series("B", [50.0] * 400, start="2023-01-02"),
        ])
        result = run_backtest(
            _config(start_date=date(2023, 1, 1), end_date=date(2024, 12, 31),
                    rebalancing_frequency=frequency),
            provider,
        )
        assert result.metrics.cagr == pytest.approx(0.0, abs=1e-12)
        assert result.metrics.max_drawdown == pytest.approx(0.0, abs=1e-12)
        assert result.metrics.volatility == pytest.approx(0.0, abs=1e-12)
        assert result.metrics.final_value == pytest.approx(10_000.0)


# ---------------------------------------------------------------------------
# Missing data
# ---------------------------------------------------------------------------


class TestStaleCarry:
    def test_missing_day_uses_last_close(self):
        provider = InMemoryPriceProvider([
            PriceSeries.from_pairs("A", [
                ("2024-01-02", 100.0), ("2024-01-03", 102.0),
                ("2024-01-04", 101.0), ("2024-01-05", 105.0),
            ]),
            PriceSeries.from_pairs("B", [("2024-01-02", 50.0), ("2024-01-05", 52.0)]),
        ])
        result = run_backtest(_config(), provider)
        b_values = [s.holdings["B"].value for s in result.snapshots]
        assert b_values == pytest.approx([4000.0, 4000.0, 4000.0, 4160.0])
        assert result.metrics.final_value == pytest.approx(10_460.0)

    def test_late_starting_ticker_uses_first_close(self):
        provider = InMemoryPriceProvider([
            PriceSeries.from_pairs("A", [
                ("2024-01-02", 100.0), ("2024-01-03", 102.0),
                ("2024-01-04", 101.0), ("2024-01-05", 105.0),
            ]),
            PriceSeries.from_pairs("B", [("2024-01-03", 40.0), ("2024-01-04", 44.0)]),
        ])
        result = run_backtest(_config(), provider)
        first = result.snapshots[0]
        assert first.shares("B") == pytest.approx(4000.0 / 40.0)
        assert first.total_value == pytest.approx(10_000.0)
        # Jan 5 carries B's Jan 4 close.
        assert result.snapshots[-1].holdings["B"].value == pytest.approx(100.0 * 44.0)

    def test_bad_closes_are_skipped(self):
        provider = InMemoryPriceProvider([
            PriceSeries.from_pairs("A", [
                ("2024-01-02", 100.0), ("2024-01-03", 0.0),
                ("2024-01-04", 101.0), ("2024-01-05", 105.0),
            ]),
            PriceSeries.from_pairs("B", [
                ("2024-01-02", 50.0), ("2024-01-03", 49.0),
                ("2024-01-04", 51.0), ("2024-01-05", 52.0),
            ]),
        ])
        result = run_backtest(_config(), provider)
        # B defines the calendar; A's zero close on Jan 3 is replaced by Jan 2's.
        assert result.snapshots[1].holdings["A"].value == pytest.approx(60.0 * 100.0)


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------


class TestBenchmark:
    def test_benchmark_comparison(self, two_asset_prices):
        prices = dict(two_asset_prices)
        prices["^GSPC"] = PriceSeries("^GSPC", prices["A"].points)
        result = run_backtest(_config(benchmark_ticker="^GSPC"), InMemoryPriceProvider(prices))

        bench = result.benchmark
        assert bench is not None
        assert bench.total_return == pytest.approx(0.05)
        assert bench.final_value == pytest.approx(10_500.0)
        assert bench.alpha == pytest.approx(0.046 - 0.05)
        assert not bench.outperformed

    def test_benchmark_beta_of_itself_is_one(self, price_provider):
        cfg = BacktestConfig(
            tickers=["^GSPC"],
            allocation={"^GSPC": 1.0},
            start_date=date(2023, 1, 1),
            end_date=date(2024, 12, 31),
            rebalancing_frequency="none",
            benchmark_ticker="^GSPC",
        )
        result = run_backtest(cfg, price_provider)
        assert result.benchmark.beta == pytest.approx(1.0)
        assert result.benchmark.alpha == pytest.approx(0.0, abs=1e-12)

    def test_missing_benchmark_propagates(self, two_asset_prices):
        with pytest.raises(DataUnavailableError):
            run_backtest(_config(benchmark_ticker="^NOPE"), InMemoryPriceProvider(two_asset_prices))


# ---------------------------------------------------------------------------
# Validation and data errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            _config(allocation={"A": 0.6, "B": 0.3})

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError):
            _config(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))

    def test_capital_must_be_positive(self):
        with pytest.raises(ValidationError):
            _config(initial_capital=0)

    def test_allocation_must_match_tickers(self):
        with pytest.raises(ValidationError, match="do not match"):
            _config(allocation={"A": 0.6, "C": 0.4})

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError):
            _config(rebalancing_frequency="weekly")

    def test_no_tickers(self):
        with pytest.raises(ValidationError):
            _config(tickers=[], allocation={"A": 1.0})

    def test_unknown_ticker_propagates(self, two_asset_prices):
        provider = InMemoryPriceProvider({"A": two_asset_prices["A"]})
        with pytest.raises(DataUnavailableError) as exc_info:
            run_backtest(_config(), provider)
        assert exc_info.value.ticker == "B"

    def test_ticker_without_data_in_range(self, make_series, two_asset_prices):
        provider = InMemoryPriceProvider({
            "A": two_asset_prices["A"],
            "B": make_series("B", [50.0, 51.0], start="2023-06-01"),
        })
        with pytest.raises(InsufficientDataError) as exc_info:
            run_backtest(_config(), provider)
        assert exc_info.value.ticker == "B"


# ---------------------------------------------------------------------------
# Result rendering
# ---------------------------------------------------------------------------


class TestBacktestResult:
    def test_summary_and_dict(self, price_provider):
        result = BacktestRunner(_long_config(benchmark_ticker="^GSPC"), price_provider).run()

        text = result.summary()
        assert "BACKTEST RESULTS" in text
        assert "^GSPC" in text
        assert "2023:" in text and "2024:" in text

        payload = result.to_dict()
        assert payload["config"]["rebalancing_frequency"] == "quarterly"
        assert len(payload["snapshots"]) == result.metrics.trading_days
        assert payload["benchmark"]["ticker"] == "^GSPC"
        assert [row["year"] for row in payload["annual_returns"]] == [2023, 2024]

    def test_monthly_returns_cover_every_month(self, price_provider):
        result = run_backtest(_long_config(), price_provider)
        # 24 month-ends, 23 month-over-month returns.
        assert len(result.monthly_returns) == 23
