"""EMA trend over closed candles, seeded with the SMA of the first full window."""

from __future__ import annotations
import logging
from typing import Iterable, List, Optional

import pandas as pd

from hurst_trader.core.types import Candle, EmaTrend, TrendSlope

logger = logging.getLogger("hurst_trader.indicators.ema")


def classify_slope(previous: Optional[float], current: float, dead_band: float = 1e-4) -> TrendSlope:
    """Sign of (current - previous), flat inside |delta| / current < dead_band."""
    if previous is None or current == 0:
        return TrendSlope.FLAT
    delta = current - previous
    if abs(delta) / abs(current) < dead_band:
        return TrendSlope.FLAT
    return TrendSlope.UP if delta > 0 else TrendSlope.DOWN


class EmaTrendIndicator:
    def __init__(self, periods: int = 30, slope_dead_band: float = 1e-4):
        self.periods = periods
        self.slope_dead_band = slope_dead_band
        self._alpha = 2.0 / (periods + 1)
        self._seed: List[float] = []
        self._value: Optional[float] = None
        self._previous: Optional[float] = None
        self.snapshot: Optional[EmaTrend] = None

    @property
    def ready(self) -> bool:
        return self.snapshot is not None

    def bootstrap(self, candles: Iterable[Candle], now: int) -> Optional[EmaTrend]:
        closes = [c.close for c in candles if c.is_closed]
        self._seed = []
        self._value = None
        self._previous = None
        self.snapshot = None
        if len(closes) < self.periods:
            logger.warning("Not enough candles for EMA (%d/%d)", len(closes), self.periods)
            self._seed = closes
            return None
        seed = sum(closes[: self.periods]) / self.periods
        series = pd.Series([seed] + closes[self.periods:], dtype=float)
        ema = series.ewm(alpha=self._alpha, adjust=False).mean()
        self._value = float(ema.iloc[-1])
        self._previous = float(ema.iloc[-2]) if len(ema) > 1 else None
        return self._publish(now)

    def on_candle_closed(self, candle: Candle, now: int) -> Optional[EmaTrend]:
        if self._value is None:
            self._seed.append(candle.close)
            if len(self._seed) < self.periods:
                return None
            self._value = sum(self._seed[-self.periods:]) / self.periods
            self._seed = []
        else:
            self._previous = self._value
            self._value = candle.close * self._alpha + self._value * (1 - self._alpha)
        return self._publish(now)

    def _publish(self, now: int) -> EmaTrend:
        self.snapshot = EmaTrend(
            value=self._value,
            slope=classify_slope(self._previous, self._value, self.slope_dead_band),
            computed_at=now,
            previous=self._previous,
        )
        logger.debug("EMA(%d)=%.8g slope=%s", self.periods, self._value, self.snapshot.slope.value)
        return self.snapshot
