"""Indicators: candle aggregation, Hurst channel, EMA trend."""

from hurst_trader.indicators.candles import CandleAggregator
from hurst_trader.indicators.hurst import HurstChannelIndicator, hurst_exponent
from hurst_trader.indicators.ema import EmaTrendIndicator, classify_slope

__all__ = [
    "CandleAggregator",
    "HurstChannelIndicator",
    "hurst_exponent",
    "EmaTrendIndicator",
    "classify_slope",
]
