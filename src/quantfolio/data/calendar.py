"""Trading calendar built from the price histories of a portfolio's tickers."""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Iterator, Mapping, Sequence

from quantfolio.errors import InsufficientDataError
from quantfolio.models import PriceSeries

logger = logging.getLogger(__name__)


class CalendarPolicy(str, Enum):
    """How the simulated trading days are derived from several tickers."""

    # The ticker with the most data points in range defines the days;
    # ties go to the ticker listed first.
    LONGEST = "longest"
    # Every date on which at least one ticker traded.
    UNION = "union"


class TradingCalendar:
    """Ordered, de-duplicated set of trading days shared by all tickers.

    Tickers that did not trade on a calendar day are valued at their last
    known close by the backtester; the calendar itself never interpolates.
    """

    def __init__(self, days: Sequence[date]) -> None:
        ordered = sorted(set(days))
        if not ordered:
            raise InsufficientDataError("Trading calendar has no days")
        self._days = ordered

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_series(
        cls,
        series_by_ticker: Mapping[str, PriceSeries],
        start: date,
        end: date,
        policy: CalendarPolicy | str = CalendarPolicy.LONGEST,
    ) -> TradingCalendar:
        """Derive the calendar for ``[start, end]`` from *series_by_ticker*.

        Iteration order of the mapping is the tie-break order for
        :attr:`CalendarPolicy.LONGEST`.
        """
        policy = CalendarPolicy(policy)
        in_range = {t: s.between(start, end) for t, s in series_by_ticker.items()}

        if policy is CalendarPolicy.UNION:
            days = {d for s in in_range.values() for d in s.dates}
            source = "union"
        else:
            source, longest = "", None
            for ticker, series in in_range.items():
                if longest is None or len(series) > len(longest):
                    source, longest = ticker, series
            days = set(longest.dates) if longest is not None else set()

        if not days:
            raise InsufficientDataError(
                f"No trading days between {start} and {end}",
                ticker=source,
            )
        logger.debug("Calendar from %s: %d days (%s)", source, len(days), policy.value)
        return cls(list(days))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def days(self) -> list[date]:
        return list(self._days)

    @property
    def first(self) -> date:
        return self._days[0]

    @property
    def last(self) -> date:
        return self._days[-1]

    def __len__(self) -> int:
        return len(self._days)

    def __iter__(self) -> Iterator[date]:
        return iter(self._days)

    def __repr__(self) -> str:
        return f"TradingCalendar({self.first} .. {self.last}, {len(self)} days)"
