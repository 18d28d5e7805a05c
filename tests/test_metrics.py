"""Unit tests for analytics.metrics."""

import pytest
from hurst_trader.analytics.metrics import (
    max_drawdown,
    win_rate,
    profit_factor,
    expectancy,
    signal_stats,
)
from hurst_trader.core.types import EntryType, ExitReason, Signal, SignalType


def exit_signal(ts, profit, pct, reason=ExitReason.UPPER_BAND_RETURN):
    return Signal("i1", "BTCUSDT", SignalType.EXIT, reason, 100.0, ts, f"p{ts}", profit=profit, profit_percent=pct)


def test_win_rate():
    assert win_rate([1, -1, 1, 1]) == 0.75
    assert win_rate([]) == 0.0


def test_profit_factor():
    assert profit_factor([10, -5, 10, -5]) == 2.0
    assert profit_factor([10, 10]) == float("inf")
    assert profit_factor([-5, -5]) == 0.0


def test_expectancy():
    assert expectancy([10, -5, 5]) == pytest.approx(10 / 3)
    assert expectancy([]) == 0.0


def test_max_drawdown():
    # equity 1 -> 1.2 -> 1.0 -> 1.1  =>  peak 1.2, dd (1.0-1.2)/1.2 = -16.67%
    cum = [1.0, 1.2, 1.0, 1.1]
    assert max_drawdown(cum) == pytest.approx(-16.666, rel=0.01)


def test_signal_stats():
    exits = [
        exit_signal(3, -20.0, -4.0, ExitReason.TRAILING_STOP),
        exit_signal(1, 50.0, 10.0),
        exit_signal(2, 30.0, 6.0),
    ]
    entry = Signal("i1", "BTCUSDT", SignalType.ENTRY, EntryType.FIRST, 100.0, 0, "p0")
    s = signal_stats(exits + [entry], initial_capital=1000.0)
    assert s.total_trades == 3
    assert s.profitable_trades == 2 and s.losing_trades == 1
    assert s.win_rate_pct == pytest.approx(200 / 3)
    assert s.total_profit == pytest.approx(60.0)
    assert s.average_profit_pct == pytest.approx(4.0)
    assert s.max_profit_pct == 10.0 and s.max_loss_pct == -4.0
    assert s.profit_factor == pytest.approx(4.0)
    assert s.roi_pct == pytest.approx(6.0)
    # equity 1000 -> 1050 -> 1080 -> 1060
    assert s.max_drawdown_pct == pytest.approx(-20 / 1080 * 100)
    assert s.by_reason["trailingStop"] == {"trades": 1, "profit": -20.0}


def test_signal_stats_empty():
    s = signal_stats([])
    assert s.total_trades == 0
    assert s.win_rate_pct == 0.0
    assert s.profit_factor == 0.0
    assert s.to_dict()["roi_pct"] == 0.0
