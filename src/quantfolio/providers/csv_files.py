"""CSV-backed price provider used by the command line tools."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from quantfolio.errors import DataUnavailableError
from quantfolio.models import DateRange, PriceSeries
from quantfolio.providers.base import PriceProvider

logger = logging.getLogger(__name__)

# Filename convention: AAPL.csv, ^GSPC.csv, etc.  Columns: date, close.
_FILENAME_TEMPLATE = "{ticker}.csv"


class CsvPriceProvider(PriceProvider):
    """Read one ``<ticker>.csv`` file per ticker from *prices_dir*.

    Files must contain at least ``date`` and ``close`` columns (any case).
    Rows with duplicate dates keep the last occurrence.
    """

    def __init__(self, prices_dir: str | Path) -> None:
        self._prices_dir = Path(prices_dir)

    @property
    def name(self) -> str:
        return "csv"

    def get_prices(self, ticker: str, date_range: DateRange) -> PriceSeries:
        path = self._prices_dir / _FILENAME_TEMPLATE.format(ticker=ticker)
        if not path.exists():
            raise DataUnavailableError(f"No price file for {ticker} at {path}", ticker=ticker)

        try:
            df = pd.read_csv(path)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
            raise DataUnavailableError(
                f"Could not read prices for {ticker}: {exc}", ticker=ticker, cause=exc,
            ) from exc

        df.columns = [str(c).strip().lower() for c in df.columns]
        if "date" not in df.columns or "close" not in df.columns:
            raise DataUnavailableError(
                f"{path} must have 'date' and 'close' columns, got {list(df.columns)}",
                ticker=ticker,
            )

        df["date"] = pd.to_datetime(df["date"]).dt.normalize()
        df = df.drop_duplicates(subset="date", keep="last").sort_values("date")
        start, end = pd.Timestamp(date_range.start), pd.Timestamp(date_range.end)
        df = df[(df["date"] >= start) & (df["date"] <= end)]

        logger.debug("Read %d rows for %s from %s", len(df), ticker, path)
        return PriceSeries.from_frame(ticker, df[["date", "close"]])
