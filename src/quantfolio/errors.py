"""Exception taxonomy for the simulation core.

User-facing failures (bad input, missing data) and internal invariant
violations live in separate branches so callers can tell "show the user a
message" apart from "page someone".
"""

from __future__ import annotations

from typing import Optional


class QuantfolioError(Exception):
    """Base for all errors raised by the simulation core."""


# ---- Caller-facing errors ----


class ValidationError(QuantfolioError, ValueError):
    """Input rejected before any simulation work starts."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class InsufficientDataError(QuantfolioError):
    """A ticker has too few usable prices, or none inside the requested range."""

    def __init__(self, message: str, ticker: str = ""):
        super().__init__(message)
        self.ticker = ticker


class DataUnavailableError(QuantfolioError):
    """The price lookup could not supply a series for a ticker.

    Raised by price providers.  The core propagates it unchanged.
    """

    def __init__(self, message: str, ticker: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.ticker = ticker
        self.cause = cause


class SimulationCancelledError(QuantfolioError):
    """The caller aborted a Monte Carlo run between path batches."""

    def __init__(self, message: str, completed_paths: int = 0):
        super().__init__(message)
        self.completed_paths = completed_paths


# ---- Internal errors ----


class SimulationInvariantError(QuantfolioError, RuntimeError):
    """An internal invariant was violated.  Indicates a bug, not bad input."""
