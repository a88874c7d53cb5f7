"""Monte Carlo forward projection of a fixed-weight portfolio.

Each simulated path compounds a daily portfolio return built from one normal
draw per asset.  Assets are sampled independently of each other: the model
carries no correlation between them.  Paths are computed in batches on a
worker pool and reduced into percentile bands once every batch is done.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Mapping, Optional, Union

import numpy as np

from quantfolio.analytics import risk
from quantfolio.analytics.returns import TRADING_DAYS_PER_YEAR
from quantfolio.errors import SimulationCancelledError, SimulationInvariantError, ValidationError
from quantfolio.models import AllocationTarget, AssetStatistics, DateRange
from quantfolio.montecarlo.sampling import RandomSource, SeededRandomSource, standard_normals

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_SIMULATIONS = 100
MAX_SIMULATIONS = 50_000
MAX_HORIZON_YEARS = 30.0
DEFAULT_BATCH_SIZE = 250
BAND_PERCENTILES = (10, 25, 50, 75, 90)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonteCarloConfig:
    """Configuration for a Monte Carlo projection.  Validated on construction."""

    allocation: Union[AllocationTarget, Mapping[str, float]]
    horizon_years: float
    simulations: int = 1_000
    initial_capital: float = 10_000.0
    seed: Optional[int] = None
    # Look-back window used to estimate each asset's statistics.
    history_years: float = 2.0
    history_end: Optional[date] = None

    def __post_init__(self) -> None:
        if not isinstance(self.allocation, AllocationTarget):
            object.__setattr__(self, "allocation", AllocationTarget(self.allocation))

        if not (0 < self.horizon_years <= MAX_HORIZON_YEARS):
            raise ValidationError(
                f"Time horizon must be between 0 and {MAX_HORIZON_YEARS:g} years, "
                f"got {self.horizon_years}",
                field="horizon_years",
            )
        if self.trading_days < 1:
            raise ValidationError(
                f"Time horizon of {self.horizon_years} years is shorter than one trading day",
                field="horizon_years",
            )
        if isinstance(self.simulations, bool) or not isinstance(self.simulations, int):
            raise ValidationError("Simulations count must be an integer", field="simulations")
        if not (MIN_SIMULATIONS <= self.simulations <= MAX_SIMULATIONS):
            raise ValidationError(
                f"Simulations count must be between {MIN_SIMULATIONS} and "
                f"{MAX_SIMULATIONS:,}, got {self.simulations}",
                field="simulations",
            )
        if not math.isfinite(self.initial_capital) or self.initial_capital <= 0:
            raise ValidationError(
                f"Initial capital must be positive, got {self.initial_capital}",
                field="initial_capital",
            )
        if self.history_years <= 0:
            raise ValidationError(
                f"History window must be positive, got {self.history_years}",
                field="history_years",
            )
        if self.seed is not None and (
            isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0
        ):
            raise ValidationError(
                f"Seed must be a non-negative integer, got {self.seed!r}",
                field="seed",
            )

    @property
    def tickers(self) -> list[str]:
        return self.allocation.tickers

    @property
    def trading_days(self) -> int:
        return int(round(self.horizon_years * TRADING_DAYS_PER_YEAR))

    def history_range(self, today: Optional[date] = None) -> DateRange:
        """Date window whose prices feed the per-asset statistics."""
        end = self.history_end or today or date.today()
        start = end - timedelta(days=int(round(self.history_years * 365)))
        return DateRange(start, end)


@dataclass(frozen=True)
class PercentileBands:
    """Portfolio value percentiles at every time step (index 0 = today)."""

    p10: np.ndarray
    p25: np.ndarray
    p50: np.ndarray
    p75: np.ndarray
    p90: np.ndarray

    def to_dict(self) -> dict:
        return {name: values.tolist() for name, values in asdict(self).items()}


@dataclass(frozen=True)
class FinalValueSummary:
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    mean: float
    worst: float
    best: float


@dataclass(frozen=True)
class OutcomeProbabilities:
    """Share of paths (0-1) ending in each outcome."""

    positive_return: float  # final > initial
    double_return: float  # final >= 2x initial
    loss_greater_than_20: float  # final <= 0.8x initial
    loss_greater_than_50: float  # final <= 0.5x initial


@dataclass(frozen=True)
class ProjectionRiskMetrics:
    """Risk of the distribution of per-path total returns.

    The fractions are absolute values of the 5th-percentile return, so a run
    where every path gains still reports a positive VaR.  The currency amounts
    keep their sign: initial capital minus the tail final value is negative
    when even the 5th-percentile path ends above the initial capital.
    """

    volatility: float
    value_at_risk_95: float
    conditional_value_at_risk_95: float
    # Currency amounts: initial capital minus the tail final value(s).
    value_at_risk_95_amount: float
    conditional_value_at_risk_95_amount: float


@dataclass(frozen=True)
class MonteCarloResult:
    """Aggregated output of a Monte Carlo run.  Individual paths are not kept."""

    config: MonteCarloConfig
    statistics: Mapping[str, AssetStatistics]
    trading_days: int
    bands: PercentileBands = field(compare=False)
    final_values: FinalValueSummary
    probabilities: OutcomeProbabilities
    expected_value: float
    expected_return: float
    risk_metrics: ProjectionRiskMetrics

    def summary(self) -> str:
        """Return a human-readable summary of the projection."""
        cfg = self.config
        fv = self.final_values
        pr = self.probabilities
        rm = self.risk_metrics
        lines = [
            "",
            "=" * 60,
            "  MONTE CARLO PROJECTION",
            "=" * 60,
            "  Allocation:      "
            + ", ".join(f"{t} {w * 100:.1f}%" for t, w in cfg.allocation.weights.items()),
            f"  Horizon:         {cfg.horizon_years:g} years ({self.trading_days} days)",
            f"  Simulations:     {cfg.simulations:,}",
            f"  Initial Capital: ${cfg.initial_capital:,.2f}",
            "-" * 60,
            f"  Expected Value:  ${self.expected_value:,.2f} ({self.expected_return * 100:+.2f}%)",
            f"  Median (p50):    ${fv.p50:,.2f}",
            f"  p10 / p90:       ${fv.p10:,.2f} / ${fv.p90:,.2f}",
            f"  Worst / Best:    ${fv.worst:,.2f} / ${fv.best:,.2f}",
            "-" * 60,
            f"  P(gain):         {pr.positive_return * 100:.1f}%",
            f"  P(double):       {pr.double_return * 100:.1f}%",
            f"  P(loss >= 20%):  {pr.loss_greater_than_20 * 100:.1f}%",
            f"  P(loss >= 50%):  {pr.loss_greater_than_50 * 100:.1f}%",
            "-" * 60,
            f"  Volatility:      {rm.volatility * 100:.2f}%",
            f"  VaR (95%):       {rm.value_at_risk_95 * 100:.2f}% (${rm.value_at_risk_95_amount:,.2f})",
            f"  CVaR (95%):      {rm.conditional_value_at_risk_95 * 100:.2f}%"
            f" (${rm.conditional_value_at_risk_95_amount:,.2f})",
            "=" * 60,
            "",
        ]
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """JSON-ready representation."""
        return {
            "config": {
                "allocation": dict(self.config.allocation.weights),
                "horizon_years": self.config.horizon_years,
                "simulations": self.config.simulations,
                "initial_capital": self.config.initial_capital,
                "seed": self.config.seed,
            },
            "statistics": {t: asdict(s) for t, s in self.statistics.items()},
            "trading_days": self.trading_days,
            "percentiles": self.bands.to_dict(),
            "final_values": asdict(self.final_values),
            "probabilities": asdict(self.probabilities),
            "expected_value": self.expected_value,
            "expected_return": self.expected_return,
            "risk_metrics": asdict(self.risk_metrics),
        }


# ---------------------------------------------------------------------------
# Path simulation (module level so process pools can pickle it)
# ---------------------------------------------------------------------------


def simulate_batch(
    random_source: RandomSource,
    daily_means: np.ndarray,
    daily_vols: np.ndarray,
    weights: np.ndarray,
    trading_days: int,
    initial_capital: float,
    first_path: int,
    path_count: int,
) -> np.ndarray:
    """Simulate paths ``first_path .. first_path + path_count - 1``.

    Returns an array of shape ``(path_count, trading_days + 1)``; column 0
    holds the initial capital.
    """
    paths = np.empty((path_count, trading_days + 1), dtype=float)
    paths[:, 0] = initial_capital
    for row in range(path_count):
        gen = random_source.for_path(first_path + row)
        z = standard_normals(gen, (trading_days, daily_means.size))
        asset_returns = daily_means + daily_vols * z
        portfolio_returns = asset_returns @ weights
        paths[row, 1:] = initial_capital * np.cumprod(1.0 + portfolio_returns)
    return paths


# ---------------------------------------------------------------------------
# Projector
# ---------------------------------------------------------------------------


class MonteCarloProjector:
    """Run many independent stochastic paths and aggregate their distribution.

    Parameters
    ----------
    random_source:
        Per-path uniform generator factory.  Defaults to
        :class:`SeededRandomSource` seeded from the config.
    max_workers:
        Size of the worker pool; ``None`` uses ``os.cpu_count()``.
    batch_size:
        Paths per submitted batch.  Also the cancellation granularity.
    use_processes:
        Use a process pool instead of a thread pool.  The random source must
        then be picklable.
    """

    def __init__(
        self,
        random_source: Optional[RandomSource] = None,
        max_workers: Optional[int] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        use_processes: bool = False,
    ) -> None:
        if batch_size <= 0:
            raise ValidationError(f"batch_size must be positive, got {batch_size}", field="batch_size")
        if max_workers is not None and max_workers <= 0:
            raise ValidationError(f"max_workers must be positive, got {max_workers}", field="max_workers")
        self._random_source = random_source
        self._max_workers = max_workers or os.cpu_count() or 1
        self._batch_size = batch_size
        self._use_processes = use_processes

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def project(
        self,
        config: MonteCarloConfig,
        statistics: Mapping[str, AssetStatistics],
        cancel_event: Optional[threading.Event] = None,
    ) -> MonteCarloResult:
        """Simulate ``config.simulations`` paths and aggregate them."""
        missing = [t for t in config.tickers if t not in statistics]
        if missing:
            raise ValidationError(f"No statistics for tickers: {missing}", field="statistics")

        logger.info(
            "Running %d simulations over %g years (%d trading days) for %s",
            config.simulations,
            config.horizon_years,
            config.trading_days,
            ", ".join(config.tickers),
        )

        paths = self.simulate_paths(config, statistics, cancel_event)
        result = self._aggregate(config, statistics, paths)

        logger.info(
            "Simulation complete. Expected return: %.2f%%, median final value %.2f",
            result.expected_return * 100,
            result.final_values.p50,
        )
        return result

    def simulate_paths(
        self,
        config: MonteCarloConfig,
        statistics: Mapping[str, AssetStatistics],
        cancel_event: Optional[threading.Event] = None,
    ) -> np.ndarray:
        """Return every simulated path as a ``(simulations, days + 1)`` array.

        Path ``i`` depends only on the random source and ``i``, so the result
        is identical for any batch size or worker count.
        """
        source = self._random_source or SeededRandomSource(config.seed)
        tickers = config.tickers
        daily_means = np.array([statistics[t].daily_mean for t in tickers], dtype=float)
        daily_vols = np.array([statistics[t].daily_volatility for t in tickers], dtype=float)
        weights = np.array([config.allocation.weight(t) for t in tickers], dtype=float)

        batches = [
            (start, min(self._batch_size, config.simulations - start))
            for start in range(0, config.simulations, self._batch_size)
        ]

        results: list[np.ndarray] = []
        with self._make_executor() as executor:
            futures: list[Future] = [
                executor.submit(
                    simulate_batch,
                    source,
                    daily_means,
                    daily_vols,
                    weights,
                    config.trading_days,
                    config.initial_capital,
                    start,
                    count,
                )
                for start, count in batches
            ]
            completed = 0
            for i, future in enumerate(futures):
                if cancel_event is not None and cancel_event.is_set():
                    for pending in futures[i:]:
                        pending.cancel()
                    logger.warning(
                        "Monte Carlo run cancelled after %d/%d paths", completed, config.simulations,
                    )
                    raise SimulationCancelledError(
                        f"Simulation cancelled after {completed} of {config.simulations} paths",
                        completed_paths=completed,
                    )
                results.append(future.result())
                completed += batches[i][1]
                logger.debug("Completed %d/%d simulations", completed, config.simulations)

        paths = np.vstack(results)
        if paths.shape != (config.simulations, config.trading_days + 1):
            raise SimulationInvariantError(
                f"Expected {config.simulations} paths of {config.trading_days + 1} steps, "
                f"got shape {paths.shape}"
            )
        return paths

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _make_executor(self) -> Executor:
        if self._use_processes:
            return ProcessPoolExecutor(max_workers=self._max_workers)
        return ThreadPoolExecutor(max_workers=self._max_workers)

    @staticmethod
    def _aggregate(
        config: MonteCarloConfig,
        statistics: Mapping[str, AssetStatistics],
        paths: np.ndarray,
    ) -> MonteCarloResult:
        initial = config.initial_capital
        n = paths.shape[0]

        # Sort every time step across paths; column -1 is the final values.
        ordered = np.sort(paths, axis=0)
        band_values = risk.interpolate_percentiles(ordered, BAND_PERCENTILES)
        bands = PercentileBands(*band_values)

        finals = ordered[:, -1]
        final_pcts = risk.interpolate_percentiles(finals, BAND_PERCENTILES)
        mean_final = float(finals.mean())
        final_summary = FinalValueSummary(
            p10=float(final_pcts[0]),
            p25=float(final_pcts[1]),
            p50=float(final_pcts[2]),
            p75=float(final_pcts[3]),
            p90=float(final_pcts[4]),
            mean=mean_final,
            worst=float(finals[0]),
            best=float(finals[-1]),
        )

        probabilities = OutcomeProbabilities(
            positive_return=float(np.count_nonzero(finals > initial)) / n,
            double_return=float(np.count_nonzero(finals >= 2 * initial)) / n,
            loss_greater_than_20=float(np.count_nonzero(finals <= 0.8 * initial)) / n,
            loss_greater_than_50=float(np.count_nonzero(finals <= 0.5 * initial)) / n,
        )

        total_returns = finals / initial - 1.0
        tail_value = risk.percentile(finals, 5)
        risk_metrics = ProjectionRiskMetrics(
            volatility=float(total_returns.std()),
            value_at_risk_95=risk.historical_var(total_returns, 0.95),
            conditional_value_at_risk_95=risk.historical_cvar(total_returns, 0.95),
            value_at_risk_95_amount=float(initial - tail_value),
            conditional_value_at_risk_95_amount=float(initial - finals[finals <= tail_value].mean()),
        )

        return MonteCarloResult(
            config=config,
            statistics=dict(statistics),
            trading_days=config.trading_days,
            bands=bands,
            final_values=final_summary,
            probabilities=probabilities,
            expected_value=mean_final,
            expected_return=mean_final / initial - 1.0,
            risk_metrics=risk_metrics,
        )
