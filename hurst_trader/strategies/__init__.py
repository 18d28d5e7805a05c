"""Strategies: base interface and the Hurst-channel reversion rules."""

from hurst_trader.strategies.base import BaseStrategy, Detection, EntryCandidate, MarketContext
from hurst_trader.strategies.hurst_reversion import HurstReversionStrategy

__all__ = ["BaseStrategy", "Detection", "EntryCandidate", "MarketContext", "HurstReversionStrategy"]
