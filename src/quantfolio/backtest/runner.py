"""Historical backtesting engine.

Steps a fixed-weight portfolio through historical closes day by day,
rebalancing back to its target weights on a calendar cadence.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping, Optional, Sequence, Union

import pandas as pd

from quantfolio.analytics.risk import DEFAULT_RISK_FREE_RATE
from quantfolio.backtest import metrics as bt_metrics
from quantfolio.data.calendar import CalendarPolicy, TradingCalendar
from quantfolio.errors import InsufficientDataError, SimulationInvariantError, ValidationError
from quantfolio.models import (
    AllocationTarget,
    DateRange,
    Holding,
    PortfolioSnapshot,
    PriceSeries,
    RebalanceFrequency,
)
from quantfolio.providers.base import PriceLookup

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BacktestConfig:
    """Configuration for a backtest run.  Validated on construction."""

    tickers: Sequence[str]
    allocation: Union[AllocationTarget, Mapping[str, float]]
    start_date: date
    end_date: date
    initial_capital: float = 10_000.0
    rebalancing_frequency: Union[RebalanceFrequency, str] = RebalanceFrequency.QUARTERLY
    benchmark_ticker: Optional[str] = "^GSPC"
    calendar_policy: Union[CalendarPolicy, str] = CalendarPolicy.LONGEST
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE

    def __post_init__(self) -> None:
        tickers = tuple(self.tickers)
        if not tickers:
            raise ValidationError("At least one ticker is required", field="tickers")
        if len(set(tickers)) != len(tickers):
            raise ValidationError(f"Duplicate tickers: {list(tickers)}", field="tickers")
        object.__setattr__(self, "tickers", tickers)

        allocation = self.allocation
        if not isinstance(allocation, AllocationTarget):
            allocation = AllocationTarget(allocation)
        if set(allocation.tickers) != set(tickers):
            raise ValidationError(
                f"Allocation tickers {sorted(allocation.tickers)} do not match "
                f"portfolio tickers {sorted(tickers)}",
                field="allocation",
            )
        object.__setattr__(self, "allocation", allocation)

        # DateRange validates start < end.
        period = DateRange(self.start_date, self.end_date)
        object.__setattr__(self, "start_date", period.start)
        object.__setattr__(self, "end_date", period.end)

        if not math.isfinite(self.initial_capital) or self.initial_capital <= 0:
            raise ValidationError(
                f"Initial capital must be positive, got {self.initial_capital}",
                field="initial_capital",
            )

        try:
            object.__setattr__(
                self, "rebalancing_frequency", RebalanceFrequency(self.rebalancing_frequency)
            )
            object.__setattr__(self, "calendar_policy", CalendarPolicy(self.calendar_policy))
        except ValueError as exc:
            raise ValidationError(str(exc), field="rebalancing_frequency") from exc

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)


@dataclass(frozen=True)
class BacktestResult:
    """Complete output of a backtest run."""

    config: BacktestConfig
    snapshots: tuple[PortfolioSnapshot, ...]
    metrics: bt_metrics.BacktestMetrics
    benchmark: Optional[bt_metrics.BenchmarkComparison]
    annual_returns: pd.DataFrame = field(compare=False)
    monthly_returns: pd.DataFrame = field(compare=False)

    def summary(self) -> str:
        """Return a human-readable summary of the backtest results."""
        m = self.metrics
        lines = [
            "",
            "=" * 60,
            "  BACKTEST RESULTS",
            "=" * 60,
            f"  Tickers:         {', '.join(self.config.tickers)}",
            f"  Period:          {self.config.start_date} to {self.config.end_date}",
            f"  Rebalancing:     {self.config.rebalancing_frequency.value}",
            f"  Initial Capital: ${self.config.initial_capital:,.2f}",
            f"  Trading Days:    {m.trading_days}",
            "-" * 60,
            f"  Final Value:     ${m.final_value:,.2f}",
            f"  Total Return:    {m.total_return * 100:+.2f}%",
            f"  CAGR:            {m.cagr * 100:+.2f}%",
            f"  Volatility:      {m.volatility * 100:.2f}%",
            f"  Max Drawdown:    {m.max_drawdown * 100:.2f}%",
            f"  Sharpe Ratio:    {m.sharpe_ratio:.2f}",
            f"  Sortino Ratio:   {m.sortino_ratio:.2f}",
            f"  VaR (95%):       {m.value_at_risk_95 * 100:.2f}%",
            f"  CVaR (95%):      {m.conditional_value_at_risk_95 * 100:.2f}%",
        ]
        if self.benchmark is not None:
            b = self.benchmark
            lines.extend([
                "-" * 60,
                f"  Benchmark:       {b.ticker}",
                f"  Bench Return:    {b.total_return * 100:+.2f}%",
                f"  Bench CAGR:      {b.cagr * 100:+.2f}%",
                f"  Alpha:           {b.alpha * 100:+.2f}%",
                f"  Beta:            {b.beta:.2f}",
            ])
        if not self.annual_returns.empty:
            lines.append("-" * 60)
            for year, ret in zip(self.annual_returns["year"], self.annual_returns["return"]):
                lines.append(f"  {year}:            {ret * 100:+.2f}%")
        lines.extend(["=" * 60, ""])
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """JSON-ready representation."""
        cfg = self.config
        return {
            "config": {
                "tickers": list(cfg.tickers),
                "allocation": dict(cfg.allocation.weights),
                "start_date": cfg.start_date.isoformat(),
                "end_date": cfg.end_date.isoformat(),
                "initial_capital": cfg.initial_capital,
                "rebalancing_frequency": cfg.rebalancing_frequency.value,
                "benchmark_ticker": cfg.benchmark_ticker,
            },
            "snapshots": [
                {
                    "date": s.date.isoformat(),
                    "value": s.total_value,
                    "holdings": {
                        t: {"shares": h.shares, "value": h.value} for t, h in s.holdings.items()
                    },
                }
                for s in self.snapshots
            ],
            "metrics": self.metrics.to_dict(),
            "benchmark": self.benchmark.to_dict() if self.benchmark is not None else None,
            "annual_returns": self.annual_returns.to_dict("records"),
            "monthly_returns": self.monthly_returns.to_dict("records"),
        }


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class BacktestRunner:
    """Replay historical closes through a fixed-weight portfolio.

    For each trading day of the :class:`TradingCalendar`:

    1. Revalue every holding at the day's close.  A ticker with no close that
       day keeps its share count and is valued at its last known close.
    2. If the rebalance interval has elapsed since the last rebalance,
       re-derive share counts from the current total value and the target
       weights at the day's closes.
    3. Record a :class:`PortfolioSnapshot`.

    No transaction costs or taxes are modelled.

    Parameters
    ----------
    config:
        Validated backtest parameters.
    price_lookup:
        Callable ``(ticker, DateRange) -> PriceSeries``.  Called once per
        ticker; its errors propagate unchanged.
    """

    def __init__(self, config: BacktestConfig, price_lookup: PriceLookup) -> None:
        self._config = config
        self._lookup = price_lookup

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> BacktestResult:
        """Execute the full backtest."""
        cfg = self._config
        series = self._load_prices()
        calendar = TradingCalendar.from_series(
            series, cfg.start_date, cfg.end_date, cfg.calendar_policy,
        )

        logger.info(
            "Backtesting %s over %d trading days: %s to %s (%s rebalancing)",
            ",".join(cfg.tickers),
            len(calendar),
            calendar.first,
            calendar.last,
            cfg.rebalancing_frequency.value,
        )

        snapshots = self.simulate(series, calendar)
        if not snapshots:
            raise SimulationInvariantError("Backtest completed with no snapshots")

        result_metrics = bt_metrics.compute_all(snapshots, cfg.initial_capital, cfg.risk_free_rate)

        benchmark = None
        if cfg.benchmark_ticker:
            bench_series = self._lookup(cfg.benchmark_ticker, cfg.date_range)
            benchmark = bt_metrics.benchmark_comparison(
                bench_series.between(cfg.start_date, cfg.end_date),
                cfg.initial_capital,
                bt_metrics.daily_returns(snapshots),
                result_metrics.total_return,
            )

        result = BacktestResult(
            config=cfg,
            snapshots=tuple(snapshots),
            metrics=result_metrics,
            benchmark=benchmark,
            annual_returns=bt_metrics.annual_returns(snapshots),
            monthly_returns=bt_metrics.monthly_returns(snapshots),
        )

        logger.info(
            "Backtest complete: %d snapshots, final value %.2f (%+.2f%%)",
            len(snapshots),
            result_metrics.final_value,
            result_metrics.total_return * 100,
        )
        return result

    def simulate(
        self,
        series: Mapping[str, PriceSeries],
        calendar: TradingCalendar,
    ) -> list[PortfolioSnapshot]:
        """Step the portfolio through *calendar* and return one snapshot per day."""
        cfg = self._config
        weights = cfg.allocation.weights
        daily_prices = _price_matrix(series, calendar).to_dict("records")

        opening = daily_prices[0]
        shares = {t: cfg.initial_capital * weights[t] / opening[t] for t in cfg.tickers}

        interval = cfg.rebalancing_frequency.interval_days
        last_rebalance = calendar.first
        snapshots: list[PortfolioSnapshot] = []

        for day, last_price in zip(calendar, daily_prices):
            total_value = sum(shares[t] * last_price[t] for t in cfg.tickers)

            rebalanced = False
            if interval is not None and (day - last_rebalance).days >= interval:
                shares = {t: total_value * weights[t] / last_price[t] for t in cfg.tickers}
                last_rebalance = day
                rebalanced = True
                logger.debug("Rebalanced on %s at value %.2f", day, total_value)

            snapshots.append(PortfolioSnapshot(
                date=day,
                total_value=total_value,
                holdings={
                    t: Holding(shares=shares[t], value=shares[t] * last_price[t])
                    for t in cfg.tickers
                },
                rebalanced=rebalanced,
            ))

        return snapshots

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_prices(self) -> dict[str, PriceSeries]:
        """Look up every ticker and keep its usable closes inside the range."""
        cfg = self._config
        series: dict[str, PriceSeries] = {}
        for ticker in cfg.tickers:
            raw = self._lookup(ticker, cfg.date_range)
            usable = raw.usable().between(cfg.start_date, cfg.end_date)
            if len(usable) == 0:
                raise InsufficientDataError(
                    f"No data available for {ticker} between {cfg.start_date} and {cfg.end_date}",
                    ticker=ticker,
                )
            series[ticker] = usable
            logger.debug("Loaded %d closes for %s", len(usable), ticker)
        return series


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _opening_price(series: PriceSeries, first_day: date) -> float:
    """Last close on or before *first_day*, else the earliest close.

    Days before a ticker's first close are valued at this price as well.
    """
    opening = series.points[0].close
    for point in series.points:
        if point.date > first_day:
            break
        opening = point.close
    return opening


def _price_matrix(series: Mapping[str, PriceSeries], calendar: TradingCalendar) -> pd.DataFrame:
    """Close of every ticker on every calendar day.

    A day without a close carries the ticker's most recent earlier close
    (stale-carry, no interpolation).  Days before the first close take the
    opening price.
    """
    days = pd.DatetimeIndex([pd.Timestamp(d) for d in calendar.days], name="date")
    columns = {}
    for ticker, s in series.items():
        closes = s.to_series()
        carried = closes.reindex(closes.index.union(days)).ffill().reindex(days)
        columns[ticker] = carried.fillna(_opening_price(s, calendar.first))
    return pd.DataFrame(columns, index=days)
