"""Execution: broker and market data interfaces, Binance Spot adapter, signal dispatch."""

from hurst_trader.execution.base import Balance, Broker, MarketData, OrderResult
from hurst_trader.execution.binance_spot import BinanceMarketData, BinanceSpotBroker
from hurst_trader.execution.dispatcher import SignalDispatcher

__all__ = [
    "Balance",
    "Broker",
    "MarketData",
    "OrderResult",
    "BinanceMarketData",
    "BinanceSpotBroker",
    "SignalDispatcher",
]
