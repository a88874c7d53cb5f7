"""Quantfolio: portfolio backtesting, Monte Carlo projection and risk analytics."""

from quantfolio.api import compute_risk_metrics, run_backtest, run_monte_carlo
from quantfolio.backtest.runner import BacktestConfig, BacktestResult
from quantfolio.errors import (
    DataUnavailableError,
    InsufficientDataError,
    QuantfolioError,
    SimulationCancelledError,
    SimulationInvariantError,
    ValidationError,
)
from quantfolio.models import AllocationTarget, AssetStatistics, DateRange, PriceSeries, RebalanceFrequency
from quantfolio.montecarlo.projector import MonteCarloConfig, MonteCarloResult

__all__ = [
    "AllocationTarget",
    "AssetStatistics",
    "BacktestConfig",
    "BacktestResult",
    "DataUnavailableError",
    "DateRange",
    "InsufficientDataError",
    "MonteCarloConfig",
    "MonteCarloResult",
    "PriceSeries",
    "QuantfolioError",
    "RebalanceFrequency",
    "SimulationCancelledError",
    "SimulationInvariantError",
    "ValidationError",
    "compute_risk_metrics",
    "run_backtest",
    "run_monte_carlo",
]
