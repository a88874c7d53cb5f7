"""Shared test fixtures."""

from __future__ import annotations

from datetime import date
from typing import Callable, Sequence

import numpy as np
import pandas as pd
import pytest

from quantfolio.models import PriceSeries
from quantfolio.providers.memory import InMemoryPriceProvider


def _business_days(start: str, periods: int) -> list[date]:
    return [ts.date() for ts in pd.bdate_range(start=start, periods=periods, freq="B")]


@pytest.fixture
def make_series() -> Callable[..., PriceSeries]:
    """Factory: ``make_series("AAA", [100, 101, ...], start="2024-01-02")``.

    Closes land on consecutive business days from *start*.
    """

    def _make(ticker: str, closes: Sequence[float], start: str = "2024-01-02") -> PriceSeries:
        days = _business_days(start, len(closes))
        return PriceSeries.from_pairs(ticker, zip(days, closes))

    return _make


@pytest.fixture
def two_asset_prices(make_series) -> dict[str, PriceSeries]:
    """Four trading days, 2024-01-02 .. 2024-01-05."""
    return {
        "A": make_series("A", [100.0, 102.0, 101.0, 105.0]),
        "B": make_series("B", [50.0, 49.0, 51.0, 52.0]),
    }


@pytest.fixture
def random_walk_prices() -> dict[str, PriceSeries]:
    """~2 years of synthetic closes for two assets and a benchmark.

    - GROW: +0.06% daily drift, 1.2% daily vol
    - BOND: +0.02% daily drift, 0.3% daily vol
    - ^GSPC: +0.04% daily drift, 1.0% daily vol
    """
    rng = np.random.default_rng(42)
    n_days = 504
    days = _business_days("2023-01-03", n_days)

    def _walk(start_price: float, drift: float, vol: float) -> np.ndarray:
        rets = drift + vol * rng.standard_normal(n_days - 1)
        return start_price * np.concatenate(([1.0], np.cumprod(1.0 + rets)))

    out = {}
    for ticker, start_price, drift, vol in [
        ("GROW", 150.0, 0.0006, 0.012),
        ("BOND", 80.0, 0.0002, 0.003),
        ("^GSPC", 4000.0, 0.0004, 0.010),
    ]:
        out[ticker] = PriceSeries.from_pairs(ticker, zip(days, _walk(start_price, drift, vol)))
    return out


@pytest.fixture
def price_provider(random_walk_prices) -> InMemoryPriceProvider:
    return InMemoryPriceProvider(random_walk_prices)
