"""Abstract broker and market data interfaces."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from hurst_trader.core.types import Candle, OrderSide, Tick
from hurst_trader.utils.exchange_filters import SymbolFilters


@dataclass
class OrderResult:
    """Result of placing a market order."""
    success: bool
    order_id: Optional[str] = None
    avg_price: Optional[float] = None
    quantity: Optional[float] = None
    quote_quantity: Optional[float] = None
    message: str = ""


@dataclass(frozen=True)
class Balance:
    asset: str
    available: float
    locked: float = 0.0


class Broker(ABC):
    """
    Order placement. Calls are blocking; the dispatcher runs them off the event loop.
    Raise TransientIOError for retryable failures and FatalError for auth failures;
    a rejected order returns OrderResult(success=False).
    client_order_id makes placement idempotent across retries.
    """

    @abstractmethod
    def place_market_order(self, symbol: str, side: OrderSide, quote_amount: float, client_order_id: str) -> OrderResult:
        """Buy (or sell) for a quote amount at market."""
        pass

    @abstractmethod
    def close_position(self, symbol: str, side: OrderSide, base_amount: float, client_order_id: str) -> OrderResult:
        """Market order for a base quantity, used to flatten a position."""
        pass

    @abstractmethod
    def get_balance(self, asset: str) -> Balance:
        pass

    def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        """Exchange lot/price/notional filters. Defaults when the broker has none."""
        return SymbolFilters()


class MarketData(ABC):
    """Historical candles plus a live tick stream for one symbol."""

    @abstractmethod
    def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Most recent closed candles, oldest first. Blocking."""
        pass

    @abstractmethod
    def stream(self, symbol: str) -> AsyncIterator[Tick]:
        """Async iterator of ticks. Reconnects internally on transient failures."""
        pass
