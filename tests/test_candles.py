"""Unit tests for indicators.candles."""

from hurst_trader.core.types import Candle, Tick
from hurst_trader.indicators.candles import CandleAggregator

T0 = 1_704_067_200_000
M15 = 900_000
H1 = 3_600_000


def tick(ts, price, high=None, low=None, volume=1.0):
    return Tick("BTCUSDT", price, ts, high=high, low=low, volume=volume)


def test_ticks_within_period_do_not_close():
    agg = CandleAggregator(["15m"])
    assert agg.on_tick(tick(T0 + 1_000, 100.0)) == []
    assert agg.on_tick(tick(T0 + 60_000, 102.0, high=103.0)) == []
    current = agg.current("15m")
    assert current.is_closed is False
    assert current.open == 100.0 and current.high == 103.0 and current.close == 102.0


def test_boundary_closes_exactly_once():
    agg = CandleAggregator(["15m"])
    agg.on_tick(tick(T0 + 1_000, 100.0))
    agg.on_tick(tick(T0 + 5_000, 98.0, low=97.5))
    agg.on_tick(tick(T0 + 10_000, 101.0))
    closed = agg.on_tick(tick(T0 + M15, 101.5))
    assert len(closed) == 1
    c = closed[0]
    assert (c.open, c.high, c.low, c.close) == (100.0, 101.0, 97.5, 101.0)
    assert c.open_time == T0 and c.close_time == T0 + M15 - 1
    assert c.volume == 3.0
    assert agg.on_tick(tick(T0 + M15 + 1_000, 101.0)) == []


def test_gap_is_filled_flat():
    agg = CandleAggregator(["15m"])
    agg.on_tick(tick(T0 + 1_000, 100.0))
    closed = agg.on_tick(tick(T0 + 3 * M15 + 10, 105.0))
    assert [c.open_time for c in closed] == [T0, T0 + M15, T0 + 2 * M15]
    assert closed[1].open == closed[1].close == 100.0
    close_times = [c.close_time for c in agg.closed("15m")]
    assert close_times == sorted(close_times)


def test_late_tick_for_closed_period_ignored():
    agg = CandleAggregator(["15m"])
    agg.on_tick(tick(T0 + 1_000, 100.0))
    agg.on_tick(tick(T0 + M15 + 1_000, 101.0))
    assert agg.on_tick(tick(T0 + 2_000, 50.0)) == []
    assert agg.last_closed("15m").low == 100.0


def test_multiple_intervals_ordered_by_close_time():
    agg = CandleAggregator(["1h", "15m"])
    agg.on_tick(tick(T0 + 1_000, 100.0))
    closed = agg.on_tick(tick(T0 + H1, 100.0))
    assert [c.interval for c in closed] == ["15m", "15m", "15m", "15m", "1h"]
    assert [c.close_time for c in closed] == sorted(c.close_time for c in closed)


def test_bootstrap_keeps_closed_sorted_unique():
    agg = CandleAggregator(["15m"])
    candles = [
        Candle("15m", T0 + M15, T0 + 2 * M15 - 1, 2, 2, 2, 2),
        Candle("15m", T0, T0 + M15 - 1, 1, 1, 1, 1),
        Candle("15m", T0, T0 + M15 - 1, 1, 1, 1, 1),
        Candle("15m", T0 + 2 * M15, T0 + 3 * M15 - 1, 3, 3, 3, 3, is_closed=False),
    ]
    assert agg.bootstrap("15m", candles) == 2
    assert [c.close for c in agg.closed("15m")] == [1, 2]
    # the first live tick in the next period opens a partial without closing anything
    assert agg.on_tick(tick(T0 + 2 * M15 + 5, 3.0)) == []
