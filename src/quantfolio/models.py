"""Shared domain models for the Quantfolio simulation core."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

import pandas as pd

from quantfolio.errors import ValidationError

# Maximum distance of the allocation weight sum from 1.0.
ALLOCATION_TOLERANCE = 0.001


def _to_date(value) -> date:
    """Coerce a date, datetime, Timestamp or ISO string to a plain ``date``."""
    if isinstance(value, date) and not hasattr(value, "hour"):
        return value
    return pd.Timestamp(value).date()


# ---- Enums ----


class RebalanceFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    NONE = "none"

    @property
    def interval_days(self) -> Optional[int]:
        """Calendar days between rebalances, or ``None`` for buy-and-hold."""
        return _REBALANCE_INTERVALS[self]


_REBALANCE_INTERVALS = {
    RebalanceFrequency.MONTHLY: 30,
    RebalanceFrequency.QUARTERLY: 90,
    RebalanceFrequency.ANNUALLY: 365,
    RebalanceFrequency.NONE: None,
}


# ---- Price data ----


@dataclass(frozen=True)
class PricePoint:
    """Single daily close."""

    date: date
    close: float


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` date window handed to the price lookup."""

    start: date
    end: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _to_date(self.start))
        object.__setattr__(self, "end", _to_date(self.end))
        if self.start >= self.end:
            raise ValidationError(
                f"Start date {self.start} must be before end date {self.end}",
                field="start_date",
            )

    def __contains__(self, d: date) -> bool:
        return self.start <= d <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days


@dataclass(frozen=True)
class PriceSeries:
    """Ordered daily closes for one ticker.  Dates are strictly increasing."""

    ticker: str
    points: tuple[PricePoint, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", tuple(self.points))
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.date <= prev.date:
                raise ValidationError(
                    f"{self.ticker}: price dates must be strictly increasing "
                    f"({prev.date} followed by {cur.date})",
                    field="points",
                )

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def from_pairs(cls, ticker: str, pairs: Iterable[tuple]) -> PriceSeries:
        """Build from ``(date, close)`` pairs.  Dates may be ISO strings."""
        return cls(
            ticker=ticker,
            points=tuple(PricePoint(_to_date(d), float(c)) for d, c in pairs),
        )

    @classmethod
    def from_frame(cls, ticker: str, df: pd.DataFrame) -> PriceSeries:
        """Build from a DataFrame with a ``close`` column.

        Accepts either a ``date`` column or a date-like index, in the same
        two layouts the data providers emit.
        """
        if "date" in df.columns:
            dates = pd.to_datetime(df["date"])
        else:
            dates = pd.to_datetime(df.index.to_series())
        frame = pd.DataFrame({"date": dates.dt.normalize().values, "close": df["close"].values})
        frame = frame.sort_values("date")
        return cls.from_pairs(ticker, zip(frame["date"], frame["close"]))

    @property
    def dates(self) -> list[date]:
        return [p.date for p in self.points]

    @property
    def closes(self) -> list[float]:
        return [p.close for p in self.points]

    def to_series(self) -> pd.Series:
        """Closes as a pandas Series indexed by ``DatetimeIndex``."""
        return pd.Series(
            self.closes,
            index=pd.DatetimeIndex([pd.Timestamp(d) for d in self.dates], name="date"),
            name=self.ticker,
            dtype=float,
        )

    def between(self, start: date, end: date) -> PriceSeries:
        """Return the points with ``start <= date <= end``."""
        return PriceSeries(
            ticker=self.ticker,
            points=tuple(p for p in self.points if start <= p.date <= end),
        )

    def usable(self) -> PriceSeries:
        """Drop missing (NaN) and non-positive closes."""
        return PriceSeries(
            ticker=self.ticker,
            points=tuple(
                p for p in self.points
                if p.close is not None and not math.isnan(p.close) and p.close > 0
            ),
        )


# ---- Allocation ----


@dataclass(frozen=True)
class AllocationTarget:
    """Target weight per ticker.  Weights must sum to 1.0 (+/- 0.001)."""

    weights: Mapping[str, float]

    def __post_init__(self) -> None:
        weights = {str(t): float(w) for t, w in dict(self.weights).items()}
        if not weights:
            raise ValidationError("At least one ticker is required", field="allocation")
        for ticker, w in weights.items():
            if not math.isfinite(w) or w < 0 or w > 1:
                raise ValidationError(
                    f"Weight for {ticker} must be between 0 and 1, got {w}",
                    field="allocation",
                )
        total = sum(weights.values())
        if abs(total - 1.0) > ALLOCATION_TOLERANCE:
            raise ValidationError(
                f"Allocation weights must sum to 1.0, got {total:.6f}",
                field="allocation",
            )
        object.__setattr__(self, "weights", weights)

    @classmethod
    def from_lists(cls, tickers: Sequence[str], weights: Sequence[float]) -> AllocationTarget:
        if len(tickers) != len(weights):
            raise ValidationError(
                f"Got {len(weights)} weights for {len(tickers)} tickers",
                field="allocation",
            )
        if len(set(tickers)) != len(tickers):
            raise ValidationError("Duplicate tickers in allocation", field="allocation")
        return cls(dict(zip(tickers, weights)))

    @classmethod
    def from_percentages(cls, percentages: Mapping[str, float]) -> AllocationTarget:
        """Build from percent allocations that sum to 100."""
        return cls({t: p / 100.0 for t, p in percentages.items()})

    @property
    def tickers(self) -> list[str]:
        return list(self.weights)

    def weight(self, ticker: str) -> float:
        return self.weights.get(ticker, 0.0)


# ---- Statistics ----


@dataclass(frozen=True)
class AssetStatistics:
    """Annualised return statistics estimated from one ticker's history."""

    ticker: str
    annualized_mean_return: float
    annualized_volatility: float
    observations: int = 0

    @property
    def daily_mean(self) -> float:
        from quantfolio.analytics.returns import TRADING_DAYS_PER_YEAR

        return self.annualized_mean_return / TRADING_DAYS_PER_YEAR

    @property
    def daily_volatility(self) -> float:
        from quantfolio.analytics.returns import TRADING_DAYS_PER_YEAR

        return self.annualized_volatility / math.sqrt(TRADING_DAYS_PER_YEAR)


# ---- Portfolio state ----


@dataclass(frozen=True)
class Holding:
    """Position in one ticker on a given day."""

    shares: float
    value: float


@dataclass(frozen=True)
class PortfolioSnapshot:
    """State of the simulated portfolio at one trading day's close."""

    date: date
    total_value: float
    holdings: Mapping[str, Holding] = field(default_factory=dict)
    rebalanced: bool = False

    def shares(self, ticker: str) -> float:
        return self.holdings[ticker].shares
