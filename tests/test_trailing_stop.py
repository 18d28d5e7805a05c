"""Unit tests for engine.trailing_stop."""

import pytest

from hurst_trader.core.types import Entry, EntryType, Position, PositionStatus, Tick
from hurst_trader.engine.trailing_stop import TrailingStopController

MIN = 60_000
T0 = 1_704_067_200_000


def active_position(first_time=T0, price=100.0):
    pos = Position(position_id="p1", symbol="BTCUSDT", status=PositionStatus.ACTIVE)
    pos.entries.append(Entry(first_time, price, EntryType.FIRST, 0.1, 100.0, 1.0))
    return pos


def tick(ts, price, high=None, low=None):
    return Tick("BTCUSDT", price, ts, high=high, low=low)


def test_trailing_stop_fires_from_peak():
    ts = TrailingStopController(trailing_stop=0.02, delay_ms=5 * MIN)
    pos = active_position()
    assert ts.on_tick(pos, tick(T0 + 6 * MIN, 109.5, high=110.0, low=109.0), T0 + 6 * MIN) is False
    assert pos.peak_price_since_armed == 110.0
    assert ts.stop_price(pos) == pytest.approx(107.8)
    assert ts.on_tick(pos, tick(T0 + 7 * MIN, 107.7), T0 + 7 * MIN) is True


def test_not_armed_before_delay():
    ts = TrailingStopController(trailing_stop=0.02, delay_ms=5 * MIN)
    pos = active_position()
    assert ts.on_tick(pos, tick(T0 + 4 * MIN, 50.0), T0 + 4 * MIN) is False
    assert pos.trailing_armed_at is None


def test_arms_exactly_at_delay():
    ts = TrailingStopController(trailing_stop=0.02, delay_ms=5 * MIN)
    pos = active_position()
    ts.on_tick(pos, tick(T0 + 5 * MIN, 101.0), T0 + 5 * MIN)
    assert pos.trailing_armed_at == T0 + 5 * MIN
    assert pos.peak_price_since_armed == 101.0


def test_peak_updates_before_low_check():
    ts = TrailingStopController(trailing_stop=0.02, delay_ms=0)
    pos = active_position()
    ts.on_tick(pos, tick(T0 + 1, 100.0), T0 + 1)
    # new high of 105 lifts the stop to 102.9, and the same tick's low 102.5 breaks it
    assert ts.on_tick(pos, tick(T0 + 2, 103.0, high=105.0, low=102.5), T0 + 2) is True


def test_disabled_or_inactive_never_fires():
    pos = active_position()
    off = TrailingStopController(enabled=False, delay_ms=0)
    assert off.on_tick(pos, tick(T0 + 1, 1.0), T0 + 1) is False
    on = TrailingStopController(delay_ms=0)
    pos.status = PositionStatus.CLOSING
    assert on.on_tick(pos, tick(T0 + 1, 1.0), T0 + 1) is False


def test_disarm():
    ts = TrailingStopController(delay_ms=0)
    pos = active_position()
    ts.on_tick(pos, tick(T0 + 1, 100.0), T0 + 1)
    ts.disarm(pos)
    assert pos.trailing_armed_at is None and pos.peak_price_since_armed is None
    assert ts.stop_price(pos) is None
