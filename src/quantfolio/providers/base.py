"""Price lookup collaborator interface.

The simulation core never fetches data itself.  It calls a *price lookup*:
any callable ``(ticker, DateRange) -> PriceSeries`` that either returns the
series or raises :class:`~quantfolio.errors.DataUnavailableError`.  Retry,
backoff and caching are the lookup's business, not the core's.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from quantfolio.models import DateRange, PriceSeries

PriceLookup = Callable[[str, DateRange], PriceSeries]


class PriceProvider(ABC):
    """Base class for price lookups backed by some data source."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in log lines."""
        ...

    @abstractmethod
    def get_prices(self, ticker: str, date_range: DateRange) -> PriceSeries:
        """Return the daily closes of *ticker* inside *date_range*.

        Raises ``DataUnavailableError`` if the ticker is unknown or the
        source cannot be read.
        """
        ...

    def __call__(self, ticker: str, date_range: DateRange) -> PriceSeries:
        return self.get_prices(ticker, date_range)
