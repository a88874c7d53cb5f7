"""Public entry points of the simulation core.

These are the three calls an outer layer (HTTP API, CLI, notebook) makes.
Each is a pure computation over the prices returned by *price_lookup*.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from quantfolio.analytics.returns import estimate_portfolio_statistics
from quantfolio.analytics.risk import ArrayLike, RiskMetrics
from quantfolio.analytics.risk import compute_risk_metrics as _compute_risk_metrics
from quantfolio.backtest.runner import BacktestConfig, BacktestResult, BacktestRunner
from quantfolio.montecarlo.projector import MonteCarloConfig, MonteCarloProjector, MonteCarloResult
from quantfolio.montecarlo.sampling import RandomSource
from quantfolio.providers.base import PriceLookup

logger = logging.getLogger(__name__)


def run_backtest(config: BacktestConfig, price_lookup: PriceLookup) -> BacktestResult:
    """Simulate *config* over historical prices from *price_lookup*."""
    return BacktestRunner(config, price_lookup).run()


def run_monte_carlo(
    config: MonteCarloConfig,
    price_lookup: PriceLookup,
    *,
    random_source: Optional[RandomSource] = None,
    max_workers: Optional[int] = None,
    batch_size: Optional[int] = None,
    use_processes: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> MonteCarloResult:
    """Estimate per-asset statistics from history, then project forward.

    Each ticker's history is looked up once over ``config.history_range()``.
    A lookup failure or a ticker with too little data aborts the whole run.
    """
    history = config.history_range()
    logger.info("Estimating statistics for %s over %s..%s",
                ", ".join(config.tickers), history.start, history.end)

    statistics = estimate_portfolio_statistics(
        {ticker: price_lookup(ticker, history) for ticker in config.tickers}
    )

    projector_kwargs = {"random_source": random_source, "max_workers": max_workers,
                        "use_processes": use_processes}
    if batch_size is not None:
        projector_kwargs["batch_size"] = batch_size
    projector = MonteCarloProjector(**projector_kwargs)
    return projector.project(config, statistics, cancel_event=cancel_event)


def compute_risk_metrics(
    returns: ArrayLike,
    benchmark_returns: Optional[ArrayLike] = None,
    risk_free_rate: Optional[float] = None,
) -> RiskMetrics:
    """Risk profile of a daily return series (fractions, not percentages)."""
    return _compute_risk_metrics(returns, benchmark_returns, risk_free_rate)
