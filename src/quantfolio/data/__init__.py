"""Data layer: trading calendar shared by the backtester."""

from quantfolio.data.calendar import CalendarPolicy, TradingCalendar

__all__ = ["CalendarPolicy", "TradingCalendar"]
