"""Trailing stop: arms a fixed delay after the first entry, then follows the peak high."""

from __future__ import annotations
import logging
from typing import Optional

from hurst_trader.core.types import Position, PositionStatus, Tick

logger = logging.getLogger("hurst_trader.engine.trailing_stop")


class TrailingStopController:
    """
    State (armed_at, peak) lives on the Position so it is persisted with it.
    Fires when tick.low <= peak * (1 - trailing_stop).
    """

    def __init__(self, trailing_stop: float = 0.02, delay_ms: int = 5 * 60 * 1000, enabled: bool = True):
        self.trailing_stop = trailing_stop
        self.delay_ms = delay_ms
        self.enabled = enabled

    def stop_price(self, position: Position) -> Optional[float]:
        if position.peak_price_since_armed is None:
            return None
        return position.peak_price_since_armed * (1 - self.trailing_stop)

    def on_tick(self, position: Position, tick: Tick, now: int) -> bool:
        if not self.enabled or position.status != PositionStatus.ACTIVE:
            return False
        first = position.first_entry_time
        if first is None:
            return False
        if position.trailing_armed_at is None:
            if now - first < self.delay_ms:
                return False
            position.trailing_armed_at = now
            position.peak_price_since_armed = tick.high
            logger.info("Trailing stop armed for %s at peak %.8g", position.position_id, tick.high)
        elif tick.high > position.peak_price_since_armed:
            position.peak_price_since_armed = tick.high
        stop = self.stop_price(position)
        if tick.low <= stop:
            logger.info("Trailing stop hit for %s: low %.8g <= %.8g (peak %.8g)",
                        position.position_id, tick.low, stop, position.peak_price_since_armed)
            return True
        return False

    def disarm(self, position: Position) -> None:
        position.trailing_armed_at = None
        position.peak_price_since_armed = None
