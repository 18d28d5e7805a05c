"""
Hurst channel: mean +/- k * sigma of the last N closes, annotated with the
rescaled-range (R/S) Hurst exponent of the window's log returns.
"""

from __future__ import annotations
import logging
import math
from collections import deque
from typing import Deque, Iterable, Optional, Sequence

import numpy as np

from hurst_trader.core.types import Candle, HurstChannel

logger = logging.getLogger("hurst_trader.indicators.hurst")

MIN_RETURNS = 10
NEUTRAL_EXPONENT = 0.5


def hurst_exponent(log_returns: Sequence[float]) -> float:
    """
    R/S estimate: average rescaled range over segment sizes {10, n/8, n/4, n/2},
    slope of log(R/S) against log(size). Clamped to [0, 1]; 0.5 when undetermined.
    """
    x = np.asarray(log_returns, dtype=float)
    n = len(x)
    if n < MIN_RETURNS or not np.all(np.isfinite(x)):
        return NEUTRAL_EXPONENT
    sizes = sorted({m for m in (10, n // 8, n // 4, n // 2) if 2 <= m < n / 2})
    log_sizes = []
    log_rs = []
    for m in sizes:
        k = n // m
        segments = x[: k * m].reshape(k, m)
        deviations = segments - segments.mean(axis=1, keepdims=True)
        cumulative = deviations.cumsum(axis=1)
        ranges = cumulative.max(axis=1) - cumulative.min(axis=1)
        stds = segments.std(axis=1)
        rs = np.where(stds > 0, ranges / np.where(stds > 0, stds, 1.0), 1.0)
        avg = float(rs.mean())
        if avg <= 0:
            continue
        log_sizes.append(math.log(m))
        log_rs.append(math.log(avg))
    if len(log_sizes) < 2:
        return NEUTRAL_EXPONENT
    slope = float(np.polyfit(log_sizes, log_rs, 1)[0])
    if not math.isfinite(slope):
        return NEUTRAL_EXPONENT
    return min(1.0, max(0.0, slope))


class HurstChannelIndicator:
    """Rolling window of closed candles; publishes a new snapshot on every close."""

    def __init__(
        self,
        periods: int = 25,
        upper_deviation_factor: float = 2.0,
        lower_deviation_factor: float = 2.0,
    ):
        self.periods = periods
        self.upper_deviation_factor = upper_deviation_factor
        self.lower_deviation_factor = lower_deviation_factor
        self._window: Deque[Candle] = deque(maxlen=periods)
        self.snapshot: Optional[HurstChannel] = None

    @property
    def ready(self) -> bool:
        return self.snapshot is not None

    def bootstrap(self, candles: Iterable[Candle], now: int) -> Optional[HurstChannel]:
        self._window.clear()
        self._window.extend(c for c in candles if c.is_closed)
        self.snapshot = None
        return self._recompute(now)

    def on_candle_closed(self, candle: Candle, now: int) -> Optional[HurstChannel]:
        self._window.append(candle)
        return self._recompute(now)

    def _recompute(self, now: int) -> Optional[HurstChannel]:
        if len(self._window) < self.periods:
            logger.warning("Not enough candles for Hurst channel (%d/%d)", len(self._window), self.periods)
            return None
        closes = np.array([c.close for c in self._window], dtype=float)
        mid = float(closes.mean())
        sigma = float(closes.std())
        with np.errstate(divide="ignore", invalid="ignore"):
            log_returns = np.diff(np.log(closes))
        exponent = hurst_exponent(log_returns)
        self.snapshot = HurstChannel(
            upper_band=mid + self.upper_deviation_factor * sigma,
            lower_band=mid - self.lower_deviation_factor * sigma,
            mid_band=mid,
            hurst_exponent=exponent,
            sigma=sigma,
            computed_at=now,
            source_candle_close_time=self._window[-1].close_time,
        )
        logger.debug(
            "Hurst channel lower=%.8g mid=%.8g upper=%.8g H=%.3f",
            self.snapshot.lower_band, mid, self.snapshot.upper_band, exponent,
        )
        return self.snapshot
