"""Unit tests for indicators.hurst."""

from dataclasses import replace

import numpy as np
import pytest

from hurst_trader.indicators.hurst import HurstChannelIndicator, hurst_exponent
from conftest import band_closes, make_candles


def test_hurst_exponent_short_series_is_neutral():
    assert hurst_exponent([0.01] * 9) == 0.5


def test_hurst_exponent_non_finite_is_neutral():
    returns = [0.01] * 20
    returns[3] = float("nan")
    assert hurst_exponent(returns) == 0.5


def test_hurst_exponent_bounded():
    rng = np.random.default_rng(7)
    h = hurst_exponent(rng.normal(0, 0.01, 200))
    assert 0.0 <= h <= 1.0


def test_channel_bands():
    ind = HurstChannelIndicator(periods=25, upper_deviation_factor=2.0, lower_deviation_factor=2.0)
    ch = ind.bootstrap(make_candles(band_closes()), now=123)
    assert ch.mid_band == pytest.approx(110.0)
    assert ch.sigma == pytest.approx(5.0)
    assert ch.upper_band == pytest.approx(120.0)
    assert ch.lower_band == pytest.approx(100.0)
    assert 0.0 <= ch.hurst_exponent <= 1.0
    assert ch.computed_at == 123
    assert ind.ready


def test_channel_needs_full_window():
    ind = HurstChannelIndicator(periods=25)
    assert ind.bootstrap(make_candles([100.0] * 24), now=0) is None
    assert not ind.ready


def test_channel_rolls_on_close():
    candles = make_candles([100.0] * 26)
    ind = HurstChannelIndicator(periods=25)
    ind.bootstrap(candles[:25], now=0)
    assert ind.snapshot.sigma == 0.0
    ch = ind.on_candle_closed(replace(candles[25], close=125.0), now=1)
    assert ch.mid_band == pytest.approx(101.0)
    assert ch.source_candle_close_time == candles[25].close_time
