"""Unit tests for indicators.ema."""

import pytest

from hurst_trader.core.types import TrendSlope
from hurst_trader.indicators.ema import EmaTrendIndicator, classify_slope
from conftest import make_candles


def test_classify_slope():
    assert classify_slope(None, 100.0) == TrendSlope.FLAT
    assert classify_slope(100.0, 101.0) == TrendSlope.UP
    assert classify_slope(100.0, 99.0) == TrendSlope.DOWN
    assert classify_slope(100.0, 100.005, dead_band=1e-4) == TrendSlope.FLAT


def test_seeded_with_sma():
    closes = [float(i) for i in range(1, 31)]
    ind = EmaTrendIndicator(periods=30)
    trend = ind.bootstrap(make_candles(closes), now=0)
    assert trend.value == pytest.approx(15.5)
    assert trend.slope == TrendSlope.FLAT


def test_incremental_update():
    closes = [float(i) for i in range(1, 31)]
    candles = make_candles(closes + [31.0])
    ind = EmaTrendIndicator(periods=30)
    ind.bootstrap(candles[:30], now=0)
    trend = ind.on_candle_closed(candles[30], now=1)
    # 15.5 + (31 - 15.5) * 2 / 31
    assert trend.value == pytest.approx(16.5)
    assert trend.previous == pytest.approx(15.5)
    assert trend.slope == TrendSlope.UP


def test_bootstrap_matches_incremental():
    closes = [100.0 + (i % 7) - i * 0.3 for i in range(45)]
    candles = make_candles(closes)
    full = EmaTrendIndicator(periods=30)
    full.bootstrap(candles, now=0)
    step = EmaTrendIndicator(periods=30)
    step.bootstrap(candles[:30], now=0)
    for c in candles[30:]:
        step.on_candle_closed(c, now=0)
    assert step.snapshot.value == pytest.approx(full.snapshot.value)
    assert step.snapshot.slope == full.snapshot.slope == TrendSlope.DOWN


def test_short_history_completes_live():
    candles = make_candles([10.0] * 31)
    ind = EmaTrendIndicator(periods=30)
    assert ind.bootstrap(candles[:29], now=0) is None
    assert not ind.ready
    trend = ind.on_candle_closed(candles[29], now=1)
    assert trend is not None and trend.value == pytest.approx(10.0)
