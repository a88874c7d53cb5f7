"""Provider factory functions for config-driven wiring."""

from __future__ import annotations

from quantfolio.config import DataConfig
from quantfolio.providers.base import PriceLookup, PriceProvider


def create_price_provider(config: DataConfig) -> PriceProvider:
    match config.provider:
        case "csv":
            from .csv_files import CsvPriceProvider
            return CsvPriceProvider(prices_dir=config.prices_dir)
        case "memory":
            from .memory import InMemoryPriceProvider
            return InMemoryPriceProvider({})
        case _:
            raise ValueError(f"Unknown price provider: {config.provider}")


__all__ = ["PriceLookup", "PriceProvider", "create_price_provider"]
