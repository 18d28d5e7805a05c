"""
Hurst-channel mean reversion entries.

first:  flat book, tick.low touches the lower band, EMA slope not down.
second: one entry held, price traded above the mid band since it, touches the lower band again,
        and min_first_entry_duration has passed since the first entry.
third:  two entries held, same mid-band reclaim and lower-band touch.
Every entry also needs min_entry_time_gap since the previous entry of the position.
"""

from __future__ import annotations
import logging
from typing import Optional

from hurst_trader.core.config import InstanceConfig
from hurst_trader.core.logger import ThrottledLog
from hurst_trader.core.types import ENTRY_SEQUENCE, EntryType, PositionStatus, TrendSlope
from hurst_trader.strategies.base import BaseStrategy, Detection, EntryCandidate, MarketContext

logger = logging.getLogger("hurst_trader.strategies.hurst_reversion")


class HurstReversionStrategy(BaseStrategy):
    def __init__(self, config: InstanceConfig):
        self.config = config
        self._throttled = ThrottledLog(logger)

    def evaluate(self, ctx: MarketContext) -> Detection:
        det = Detection()
        channel = ctx.channel
        if channel is None:
            det.blocked = "hurst channel not ready"
            return det
        pos = ctx.position
        tick = ctx.tick

        if (
            pos.status == PositionStatus.ACTIVE
            and not pos.above_mid_seen
            and pos.last_entry_time is not None
            and ctx.now > pos.last_entry_time
            and tick.high > channel.mid_band
        ):
            det.mid_reclaimed = True

        entry_type = self._next_rule(ctx)
        if entry_type is None or ctx.entry_pending:
            return det
        if tick.low > channel.lower_band:
            return det

        reason = self._blocked(entry_type, ctx, det.mid_reclaimed)
        if reason:
            det.blocked = reason
            self._throttled.debug(
                f"{self.config.instance_id}:{entry_type.value}:{reason}", 60,
                "[%s] %s entry blocked at low %.8g <= lower %.8g: %s",
                self.config.instance_id, entry_type.value, tick.low, channel.lower_band, reason,
            )
            return det

        trend = ctx.trend
        det.entry = EntryCandidate(
            entry_type=entry_type,
            price=tick.price,
            allocation_fraction=self.config.capital_allocation.fraction(entry_type),
            metadata={
                "lowerBand": channel.lower_band,
                "midBand": channel.mid_band,
                "upperBand": channel.upper_band,
                "hurstExponent": channel.hurst_exponent,
                "tickLow": tick.low,
                "emaValue": trend.value if trend else None,
                "emaSlope": trend.slope.value if trend else None,
                "distanceFromLowerPct": (tick.price - channel.lower_band) / channel.lower_band * 100,
            },
        )
        return det

    def _next_rule(self, ctx: MarketContext) -> Optional[EntryType]:
        """Lowest-rank rule whose position state applies; at most one entry per tick."""
        pos = ctx.position
        for entry_type in ENTRY_SEQUENCE:
            if entry_type == EntryType.FIRST:
                if pos.status == PositionStatus.NONE and not pos.entries:
                    return entry_type
            elif pos.status == PositionStatus.ACTIVE and len(pos.entries) == entry_type.rank:
                return entry_type
        return None

    def _blocked(self, entry_type: EntryType, ctx: MarketContext, mid_now: bool) -> Optional[str]:
        signals = self.config.signals
        pos = ctx.position
        if signals.check_ema_trend:
            if ctx.trend is None:
                return "ema trend not ready"
            if ctx.trend.slope == TrendSlope.DOWN:
                return "ema slope down"
        last = pos.last_entry_time
        if last is not None and ctx.now - last < signals.min_entry_time_gap:
            return "min entry time gap"
        if entry_type == EntryType.SECOND and ctx.now - pos.first_entry_time < signals.min_first_entry_duration:
            return "min first entry duration"
        # the reclaim must precede the touch, a tick that does both does not count
        if entry_type != EntryType.FIRST and not pos.above_mid_seen:
            return "mid band not reclaimed" if not mid_now else "mid band reclaimed on this tick"
        return None
