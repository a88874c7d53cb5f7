"""In-memory price provider for unit tests and library callers."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Union

from quantfolio.errors import DataUnavailableError
from quantfolio.models import DateRange, PriceSeries
from quantfolio.providers.base import PriceProvider

logger = logging.getLogger(__name__)


class InMemoryPriceProvider(PriceProvider):
    """Serve price series held in a dict, filtered to the requested range.

    Records every lookup in :attr:`calls` so tests can assert that the core
    asks once per ticker and never retries.
    """

    def __init__(self, series: Union[Mapping[str, PriceSeries], Iterable[PriceSeries]]):
        if isinstance(series, Mapping):
            self._series = dict(series)
        else:
            self._series = {s.ticker: s for s in series}
        self.calls: list[tuple[str, DateRange]] = []

    @property
    def name(self) -> str:
        return "memory"

    def get_prices(self, ticker: str, date_range: DateRange) -> PriceSeries:
        self.calls.append((ticker, date_range))
        if ticker not in self._series:
            raise DataUnavailableError(f"No price history for {ticker}", ticker=ticker)
        series = self._series[ticker].between(date_range.start, date_range.end)
        logger.debug("memory lookup %s: %d points", ticker, len(series))
        return series
