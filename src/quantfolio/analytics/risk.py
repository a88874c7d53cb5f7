"""Risk metric calculations shared by the backtester and the Monte Carlo projector.

All functions operate on daily fractional returns (0.01 == 1%) or on value
series, accept lists, numpy arrays or pandas Series, and return ``0.0``
instead of dividing by zero when a series is too short or has no dispersion.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from quantfolio.analytics.returns import TRADING_DAYS_PER_YEAR, annualize_mean, annualize_volatility
from quantfolio.models import PriceSeries

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_RISK_FREE_RATE = 0.045  # annualised
DEFAULT_ROLLING_WINDOW = 30


def _as_array(values: ArrayLike) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    return arr[~np.isnan(arr)]


# ---------------------------------------------------------------------------
# Dispersion and risk-adjusted return
# ---------------------------------------------------------------------------


def volatility(returns: ArrayLike) -> float:
    """Annualised volatility: std(returns) * sqrt(252)."""
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    return annualize_volatility(float(r.std()))


def sharpe_ratio(returns: ArrayLike, risk_free_rate: float = DEFAULT_RISK_FREE_RATE) -> float:
    """Annualised Sharpe ratio.

    Sharpe = (mean * 252 - risk_free_rate) / (std * sqrt(252))
    """
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    vol = volatility(r)
    if vol == 0:
        return 0.0
    return (annualize_mean(float(r.mean())) - risk_free_rate) / vol


def downside_deviation(returns: ArrayLike, target: float = 0.0) -> float:
    """Annualised root-mean-square shortfall of the returns below *target*."""
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    downside = r[r < target]
    if downside.size == 0:
        return 0.0
    return annualize_volatility(float(np.sqrt(np.mean((downside - target) ** 2))))


def sortino_ratio(
    returns: ArrayLike,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    target: float = 0.0,
) -> float:
    """Annualised Sortino ratio.

    Like Sharpe but divides by downside deviation instead of total volatility.
    """
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    dd = downside_deviation(r, target)
    if dd == 0:
        return 0.0
    return (annualize_mean(float(r.mean())) - risk_free_rate) / dd


def beta(portfolio_returns: ArrayLike, market_returns: ArrayLike) -> float:
    """Cov(portfolio, market) / Var(market).

    Only the overlapping-length prefix of the two series is compared; the
    longer series is truncated.
    """
    p = _as_array(portfolio_returns)
    m = _as_array(market_returns)
    n = min(p.size, m.size)
    if n < 2:
        return 0.0
    p, m = p[:n], m[:n]
    market_var = float(np.mean((m - m.mean()) ** 2))
    if market_var == 0:
        return 0.0
    cov = float(np.mean((p - p.mean()) * (m - m.mean())))
    return cov / market_var


# ---------------------------------------------------------------------------
# Drawdown
# ---------------------------------------------------------------------------


def max_drawdown(values: ArrayLike) -> float:
    """Maximum peak-to-valley drawdown (returned as a positive number).

    E.g. a 25% drawdown is returned as 0.25.
    """
    v = _as_array(values)
    if v.size < 2:
        return 0.0
    running_peak = np.maximum.accumulate(v)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(running_peak > 0, (running_peak - v) / running_peak, 0.0)
    return float(max(drawdowns.max(), 0.0))


def equity_curve(returns: ArrayLike, start: float = 1.0) -> np.ndarray:
    """Compound daily returns into a value path that begins at *start*."""
    r = _as_array(returns)
    return start * np.concatenate(([1.0], np.cumprod(1.0 + r)))


# ---------------------------------------------------------------------------
# Percentiles and tail risk
# ---------------------------------------------------------------------------


def interpolate_percentiles(sorted_values: np.ndarray, percentiles: Sequence[float]) -> np.ndarray:
    """Linearly interpolate percentiles from values sorted along axis 0.

    For each percentile ``p`` the fractional rank is ``p/100 * (n-1)``; the
    result blends the two neighbouring ranks.  Works column-wise on 2-D input.
    """
    arr = np.asarray(sorted_values, dtype=float)
    n = arr.shape[0]
    out = []
    for pct in percentiles:
        rank = (pct / 100.0) * (n - 1)
        lower = int(math.floor(rank))
        upper = int(math.ceil(rank))
        weight = rank - lower
        if lower == upper:
            out.append(arr[lower])
        else:
            out.append(arr[lower] * (1.0 - weight) + arr[upper] * weight)
    return np.asarray(out)


def percentile(sorted_values: ArrayLike, pct: float) -> float:
    """Percentile of an already-sorted 1-D series (linear interpolation)."""
    arr = np.asarray(sorted_values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(interpolate_percentiles(arr, [pct])[0])


def tail_index(n: int, confidence: float) -> int:
    """Position of the VaR observation in a sorted series of *n* values."""
    # Small epsilon keeps e.g. (1 - 0.95) * 100 from landing on 4.999...
    return min(int(math.floor((1.0 - confidence) * n + 1e-9)), n - 1)


def historical_var(returns: ArrayLike, confidence: float = 0.95) -> float:
    """Historical Value at Risk.

    Absolute value of the return at the ``(1 - confidence)`` position of the
    sorted return distribution; 95% VaR uses the 5th percentile.
    """
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    ordered = np.sort(r)
    return abs(float(ordered[tail_index(ordered.size, confidence)]))


def historical_cvar(returns: ArrayLike, confidence: float = 0.95) -> float:
    """Conditional VaR: absolute mean of every return at or below the VaR return."""
    r = _as_array(returns)
    if r.size < 2:
        return 0.0
    ordered = np.sort(r)
    threshold = ordered[tail_index(ordered.size, confidence)]
    tail = ordered[ordered <= threshold]
    return abs(float(tail.mean()))


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


def rolling_volatility(
    prices: Union[pd.Series, PriceSeries],
    window: int = DEFAULT_ROLLING_WINDOW,
) -> pd.Series:
    """Annualised volatility over each trailing *window* of daily returns.

    A window holds *window* returns, i.e. *window* + 1 closes, and includes
    the return into the date it is indexed by.  Returns a Series indexed by
    the last date of each window.  Empty if the history is shorter than the
    window.
    """
    if window < 2:
        raise ValueError(f"Rolling window must be at least 2, got {window}")
    if isinstance(prices, PriceSeries):
        prices = prices.usable().to_series()
    rets = prices.astype(float).pct_change().dropna()
    rolled = rets.rolling(window).std(ddof=0) * math.sqrt(TRADING_DAYS_PER_YEAR)
    return rolled.dropna().rename("volatility")


# ---------------------------------------------------------------------------
# Aggregated metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskMetrics:
    """Risk profile of a daily return series."""

    annualized_return: float
    annualized_volatility: float
    sharpe_ratio: float
    sortino_ratio: float
    downside_deviation: float
    max_drawdown: float
    value_at_risk_95: float
    value_at_risk_99: float
    conditional_value_at_risk_95: float
    conditional_value_at_risk_99: float
    beta: Optional[float] = None
    observations: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_risk_metrics(
    returns: ArrayLike,
    benchmark_returns: Optional[ArrayLike] = None,
    risk_free_rate: Optional[float] = None,
) -> RiskMetrics:
    """Compute every risk metric for a daily return series.

    ``beta`` is only populated when *benchmark_returns* is given.  The
    drawdown is measured on the equity curve compounded from *returns*.
    """
    rf = DEFAULT_RISK_FREE_RATE if risk_free_rate is None else risk_free_rate
    r = _as_array(returns)
    mean_annual = annualize_mean(float(r.mean())) if r.size >= 2 else 0.0

    return RiskMetrics(
        annualized_return=mean_annual,
        annualized_volatility=volatility(r),
        sharpe_ratio=sharpe_ratio(r, rf),
        sortino_ratio=sortino_ratio(r, rf),
        downside_deviation=downside_deviation(r),
        max_drawdown=max_drawdown(equity_curve(r)),
        value_at_risk_95=historical_var(r, 0.95),
        value_at_risk_99=historical_var(r, 0.99),
        conditional_value_at_risk_95=historical_cvar(r, 0.95),
        conditional_value_at_risk_99=historical_cvar(r, 0.99),
        beta=beta(r, benchmark_returns) if benchmark_returns is not None else None,
        observations=int(r.size),
    )
