"""Performance metric calculations for backtesting results.

All functions operate on the daily snapshots (or their value series) produced
by :class:`~quantfolio.backtest.runner.BacktestRunner`.  Returns are
fractions, not percentages.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import TYPE_CHECKING, Optional, Sequence

import pandas as pd

from quantfolio.analytics import risk
from quantfolio.analytics.returns import price_returns
from quantfolio.models import PriceSeries

if TYPE_CHECKING:
    from quantfolio.models import PortfolioSnapshot


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# CAGR uses elapsed calendar time, not a trading-day count.
CALENDAR_DAYS_PER_YEAR = 365


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BacktestMetrics:
    """Headline statistics of a simulated portfolio."""

    total_return: float
    cagr: float
    volatility: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    value_at_risk_95: float
    conditional_value_at_risk_95: float
    final_value: float
    trading_days: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BenchmarkComparison:
    """Buy-and-hold of the benchmark over the same period, versus the portfolio."""

    ticker: str
    total_return: float
    cagr: float
    volatility: float
    final_value: float
    beta: float
    alpha: float  # portfolio total return - benchmark total return

    @property
    def outperformed(self) -> bool:
        return self.alpha > 0

    def to_dict(self) -> dict:
        return {**asdict(self), "outperformed": self.outperformed}


# ---------------------------------------------------------------------------
# Core metric functions
# ---------------------------------------------------------------------------


def total_return(values: Sequence[float], initial: Optional[float] = None) -> float:
    """Cumulative total return: (final / initial) - 1."""
    if len(values) == 0:
        return 0.0
    start = float(values[0]) if initial is None else float(initial)
    if start == 0:
        return 0.0
    return float(values[-1]) / start - 1.0


def cagr(
    values: Sequence[float],
    dates: Sequence[date],
    initial: Optional[float] = None,
) -> float:
    """Compound Annual Growth Rate.

    CAGR = (final / initial) ^ (1 / years) - 1, with ``years`` measured as
    elapsed calendar days / 365 between the first and last date.
    """
    if len(values) == 0 or len(dates) < 2:
        return 0.0
    start = float(values[0]) if initial is None else float(initial)
    final = float(values[-1])
    years = (dates[-1] - dates[0]).days / CALENDAR_DAYS_PER_YEAR
    if start <= 0 or final <= 0 or years <= 0:
        return 0.0
    return (final / start) ** (1.0 / years) - 1.0


def value_series(snapshots: Sequence[PortfolioSnapshot]) -> pd.Series:
    """Portfolio total value indexed by date."""
    return pd.Series(
        [s.total_value for s in snapshots],
        index=pd.DatetimeIndex([pd.Timestamp(s.date) for s in snapshots], name="date"),
        name="portfolio_value",
        dtype=float,
    )


def daily_returns(snapshots: Sequence[PortfolioSnapshot]) -> pd.Series:
    return value_series(snapshots).pct_change().dropna()


# ---------------------------------------------------------------------------
# Calendar-period returns
# ---------------------------------------------------------------------------


def annual_returns(snapshots: Sequence[PortfolioSnapshot]) -> pd.DataFrame:
    """Return of each calendar year, first to last snapshot inside the year.

    Returns a DataFrame with columns: year, return
    """
    if not snapshots:
        return pd.DataFrame(columns=["year", "return"])

    series = value_series(snapshots)
    rows = []
    for year, group in series.groupby(series.index.year):
        start_value = float(group.iloc[0])
        end_value = float(group.iloc[-1])
        ret = end_value / start_value - 1.0 if start_value else 0.0
        rows.append({"year": int(year), "return": ret})

    return pd.DataFrame(rows, columns=["year", "return"])


def monthly_returns(snapshots: Sequence[PortfolioSnapshot]) -> pd.DataFrame:
    """Build a table of month-over-month returns from daily snapshots.

    Returns a DataFrame with columns: year, month, return
    """
    if len(snapshots) < 2:
        return pd.DataFrame(columns=["year", "month", "return"])

    # Resample to month-end, taking the last available value in each month.
    month_end = value_series(snapshots).resample("ME").last().dropna()
    monthly_rets = month_end.pct_change().dropna()

    rows = [
        {"year": dt.year, "month": dt.month, "return": float(ret)}
        for dt, ret in monthly_rets.items()
    ]
    return pd.DataFrame(rows, columns=["year", "month", "return"])


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------


def benchmark_comparison(
    benchmark: PriceSeries,
    initial_capital: float,
    portfolio_returns: pd.Series,
    portfolio_total_return: float,
) -> BenchmarkComparison:
    """Compare the portfolio with buying and holding *benchmark*.

    Beta is computed on the days both series have a return.
    """
    usable = benchmark.usable()
    if len(usable) < 2:
        return BenchmarkComparison(
            ticker=benchmark.ticker,
            total_return=0.0,
            cagr=0.0,
            volatility=0.0,
            final_value=initial_capital,
            beta=0.0,
            alpha=portfolio_total_return,
        )

    closes = usable.closes
    final_value = initial_capital * closes[-1] / closes[0]
    bench_total = total_return(closes)
    bench_returns = price_returns(usable)

    aligned = pd.concat(
        [portfolio_returns.rename("portfolio"), bench_returns.rename("benchmark")],
        axis=1,
        join="inner",
    )

    return BenchmarkComparison(
        ticker=benchmark.ticker,
        total_return=bench_total,
        cagr=cagr(closes, usable.dates),
        volatility=risk.volatility(bench_returns),
        final_value=final_value,
        beta=risk.beta(aligned["portfolio"], aligned["benchmark"]),
        alpha=portfolio_total_return - bench_total,
    )


# ---------------------------------------------------------------------------
# Aggregated compute_all
# ---------------------------------------------------------------------------


def compute_all(
    snapshots: Sequence[PortfolioSnapshot],
    initial_capital: float,
    risk_free_rate: float = risk.DEFAULT_RISK_FREE_RATE,
) -> BacktestMetrics:
    """Compute all performance metrics from daily snapshots."""
    values = [s.total_value for s in snapshots]
    dates = [s.date for s in snapshots]
    rets = daily_returns(snapshots)

    return BacktestMetrics(
        total_return=total_return(values, initial_capital),
        cagr=cagr(values, dates, initial_capital),
        volatility=risk.volatility(rets),
        sharpe_ratio=risk.sharpe_ratio(rets, risk_free_rate),
        sortino_ratio=risk.sortino_ratio(rets, risk_free_rate),
        max_drawdown=risk.max_drawdown(values),
        value_at_risk_95=risk.historical_var(rets, 0.95),
        conditional_value_at_risk_95=risk.historical_cvar(rets, 0.95),
        final_value=float(values[-1]) if values else 0.0,
        trading_days=len(snapshots),
    )
