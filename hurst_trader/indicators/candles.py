"""
Tick -> candle aggregation for several intervals at once.

Closed candles are emitted exactly once per period boundary crossed, in close_time order.
Periods with no ticks are closed as flat candles at the previous close so history has no gaps.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional

from hurst_trader.core.types import Candle, Tick
from hurst_trader.utils.timeframes import period_open, timeframe_ms

logger = logging.getLogger("hurst_trader.indicators.candles")


@dataclass
class _Partial:
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def update(self, tick: Tick) -> None:
        self.high = max(self.high, tick.high)
        self.low = min(self.low, tick.low)
        self.close = tick.price
        self.volume += tick.volume


class CandleAggregator:
    """Maintains one forming candle per interval and a bounded history of closed ones."""

    def __init__(self, intervals: Iterable[str], history_size: int = 500):
        self._periods: Dict[str, int] = {iv: timeframe_ms(iv) for iv in intervals}
        self._partial: Dict[str, Optional[_Partial]] = {iv: None for iv in self._periods}
        self._history: Dict[str, Deque[Candle]] = {iv: deque(maxlen=history_size) for iv in self._periods}

    @property
    def intervals(self) -> List[str]:
        return list(self._periods)

    def bootstrap(self, interval: str, candles: Iterable[Candle]) -> int:
        """Seed history with closed candles from the market-data source. Returns count kept."""
        period = self._periods[interval]
        by_open = {c.open_time: c for c in candles if c.is_closed}
        history = self._history[interval]
        history.clear()
        for open_time in sorted(by_open):
            c = by_open[open_time]
            history.append(Candle(
                interval=interval,
                open_time=c.open_time,
                close_time=c.open_time + period - 1,
                open=c.open,
                high=c.high,
                low=c.low,
                close=c.close,
                volume=c.volume,
            ))
        self._partial[interval] = None
        return len(history)

    def closed(self, interval: str) -> List[Candle]:
        return list(self._history[interval])

    def last_closed(self, interval: str) -> Optional[Candle]:
        history = self._history[interval]
        return history[-1] if history else None

    def current(self, interval: str) -> Optional[Candle]:
        """Snapshot of the forming candle (is_closed=False)."""
        p = self._partial[interval]
        if p is None:
            return None
        return Candle(
            interval=interval,
            open_time=p.open_time,
            close_time=p.open_time + self._periods[interval] - 1,
            open=p.open,
            high=p.high,
            low=p.low,
            close=p.close,
            volume=p.volume,
            is_closed=False,
        )

    def on_tick(self, tick: Tick) -> List[Candle]:
        """Fold a tick into every interval. Returns newly closed candles ordered by close_time."""
        closed: List[Candle] = []
        for interval, period in self._periods.items():
            closed.extend(self._advance(interval, period, tick))
        closed.sort(key=lambda c: (c.close_time, self._periods[c.interval]))
        return closed

    def _advance(self, interval: str, period: int, tick: Tick) -> List[Candle]:
        open_time = period_open(tick.timestamp, period)
        last = self.last_closed(interval)
        if last is not None and open_time <= last.open_time:
            # Late tick for a period that is already closed
            return []
        partial = self._partial[interval]
        out: List[Candle] = []
        if partial is None:
            if last is not None:
                out.extend(self._fill_gap(interval, period, last.open_time + period, open_time, last.close))
        elif open_time == partial.open_time:
            partial.update(tick)
            return []
        elif open_time < partial.open_time:
            return []
        else:
            out.append(self._finalise(interval, period, partial))
            out.extend(self._fill_gap(interval, period, partial.open_time + period, open_time, partial.close))
        self._partial[interval] = _Partial(
            open_time=open_time,
            open=tick.price,
            high=tick.high,
            low=tick.low,
            close=tick.price,
            volume=tick.volume,
        )
        return out

    def _finalise(self, interval: str, period: int, p: _Partial) -> Candle:
        candle = Candle(
            interval=interval,
            open_time=p.open_time,
            close_time=p.open_time + period - 1,
            open=p.open,
            high=p.high,
            low=p.low,
            close=p.close,
            volume=p.volume,
        )
        self._history[interval].append(candle)
        return candle

    def _fill_gap(self, interval: str, period: int, start: int, stop: int, price: float) -> List[Candle]:
        filled = []
        for open_time in range(start, stop, period):
            candle = Candle(
                interval=interval,
                open_time=open_time,
                close_time=open_time + period - 1,
                open=price,
                high=price,
                low=price,
                close=price,
            )
            self._history[interval].append(candle)
            filled.append(candle)
        if filled:
            logger.debug("%s: filled %d empty period(s) at %.8g", interval, len(filled), price)
        return filled
