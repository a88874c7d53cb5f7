"""Return statistics estimated from historical price series.

Converts closes into daily simple returns and annualises their mean and
volatility using the 252 trading-day convention shared by the whole core.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from quantfolio.errors import InsufficientDataError
from quantfolio.models import AssetStatistics, PriceSeries

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TRADING_DAYS_PER_YEAR = 252
MIN_PRICE_POINTS = 2


# ---------------------------------------------------------------------------
# Return series
# ---------------------------------------------------------------------------


def simple_returns(prices: Sequence[float]) -> np.ndarray:
    """Daily simple returns: (p[t] - p[t-1]) / p[t-1]."""
    arr = np.asarray(prices, dtype=float)
    if arr.size < 2:
        return np.empty(0, dtype=float)
    return np.diff(arr) / arr[:-1]


def price_returns(series: PriceSeries) -> pd.Series:
    """Daily returns of a price series, indexed by the later date of each pair."""
    closes = series.usable().to_series()
    return closes.pct_change().dropna()


def annualize_mean(daily_mean: float) -> float:
    return daily_mean * TRADING_DAYS_PER_YEAR


def annualize_volatility(daily_std: float) -> float:
    return daily_std * math.sqrt(TRADING_DAYS_PER_YEAR)


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


def estimate_asset_statistics(series: PriceSeries) -> AssetStatistics:
    """Estimate annualised mean return and volatility for one ticker.

    Non-positive and missing closes are discarded first.  Raises
    :class:`InsufficientDataError` if fewer than two usable closes remain.
    """
    usable = series.usable()
    if len(usable) < MIN_PRICE_POINTS:
        raise InsufficientDataError(
            f"Insufficient historical data for {series.ticker}: "
            f"{len(usable)} usable price(s), need at least {MIN_PRICE_POINTS}",
            ticker=series.ticker,
        )

    returns = simple_returns(usable.closes)
    stats = AssetStatistics(
        ticker=series.ticker,
        annualized_mean_return=annualize_mean(float(returns.mean())),
        annualized_volatility=annualize_volatility(float(returns.std())),
        observations=int(returns.size),
    )
    logger.debug(
        "%s: mean=%.4f vol=%.4f over %d returns",
        stats.ticker,
        stats.annualized_mean_return,
        stats.annualized_volatility,
        stats.observations,
    )
    return stats


def estimate_portfolio_statistics(
    series_by_ticker: Mapping[str, PriceSeries],
) -> dict[str, AssetStatistics]:
    """Estimate statistics for every ticker.  Fails on the first bad ticker."""
    return {
        ticker: estimate_asset_statistics(series)
        for ticker, series in series_by_ticker.items()
    }
