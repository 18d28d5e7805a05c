"""Analytics: trade statistics (win rate, profit factor, drawdown, ROI)."""

from hurst_trader.analytics.metrics import (
    SignalStats,
    signal_stats,
    max_drawdown,
    win_rate,
    profit_factor,
    expectancy,
)

__all__ = [
    "SignalStats",
    "signal_stats",
    "max_drawdown",
    "win_rate",
    "profit_factor",
    "expectancy",
]
