"""Unit tests for engine.upper_band."""

from hurst_trader.core.types import Tick, UpperBandPhase
from hurst_trader.engine.upper_band import UpperBandStateMachine

MIN = 60_000
T0 = 1_704_067_200_000
BAND = 120.0


def tick(ts, price, high=None, low=None):
    return Tick("BTCUSDT", price, ts, high=high, low=low)


def machine(**kw):
    return UpperBandStateMachine(exit_trigger_factor=1.001, return_trigger_factor=0.999,
                                 exit_confirm_ms=15 * MIN, return_confirm_ms=15 * MIN, **kw)


def test_two_phase_exit():
    sm = machine()
    assert sm.on_tick(tick(T0, 120.15, high=120.2, low=120.0), BAND) is False
    assert sm.phase == UpperBandPhase.EXIT_COUNTING
    assert sm.on_tick(tick(T0 + 16 * MIN, 120.15, high=120.2, low=120.0), BAND) is False
    assert sm.phase == UpperBandPhase.WAITING_FOR_RETURN
    assert sm.on_tick(tick(T0 + 16 * MIN, 119.6, high=119.9, low=119.5), BAND) is False
    assert sm.phase == UpperBandPhase.RETURN_COUNTING
    assert sm.on_tick(tick(T0 + 31 * MIN, 119.4, high=119.6, low=119.3), BAND) is True
    assert sm.phase == UpperBandPhase.IDLE


def test_spike_back_above_does_not_exit():
    sm = machine()
    sm.on_tick(tick(T0, 120.2), BAND)
    sm.on_tick(tick(T0 + 16 * MIN, 120.2), BAND)
    assert sm.phase == UpperBandPhase.WAITING_FOR_RETURN
    assert sm.on_tick(tick(T0 + 17 * MIN, 119.7), BAND) is False
    assert sm.phase == UpperBandPhase.RETURN_COUNTING
    assert sm.on_tick(tick(T0 + 17 * MIN + 10_000, 120.3), BAND) is False
    assert sm.phase == UpperBandPhase.WAITING_FOR_RETURN
    # the return timer restarts from the next touch
    sm.on_tick(tick(T0 + 20 * MIN, 119.7), BAND)
    assert sm.on_tick(tick(T0 + 34 * MIN, 119.7), BAND) is False
    assert sm.on_tick(tick(T0 + 35 * MIN, 119.7), BAND) is True


def test_excursion_abandoned_before_timer():
    sm = machine()
    sm.on_tick(tick(T0, 120.2), BAND)
    sm.on_tick(tick(T0 + 5 * MIN, 120.0), BAND)
    assert sm.phase == UpperBandPhase.IDLE


def test_trigger_exactly_at_exit_level():
    sm = machine()
    level = BAND * 1.001
    sm.on_tick(tick(T0, level), BAND)
    assert sm.phase == UpperBandPhase.EXIT_COUNTING


def test_exit_timer_exactly_elapsed_advances():
    sm = machine()
    sm.on_tick(tick(T0, 120.2), BAND)
    sm.on_tick(tick(T0 + 15 * MIN - 1, 120.2), BAND)
    assert sm.phase == UpperBandPhase.EXIT_COUNTING
    sm.on_tick(tick(T0 + 15 * MIN, 120.2), BAND)
    assert sm.phase == UpperBandPhase.WAITING_FOR_RETURN


def test_one_transition_per_tick():
    sm = machine()
    # would satisfy both the exit trigger and the return trigger
    sm.on_tick(tick(T0, 120.0, high=120.2, low=119.0), BAND)
    assert sm.phase == UpperBandPhase.EXIT_COUNTING


def test_band_refresh_while_counting():
    sm = machine()
    sm.on_tick(tick(T0, 120.2), BAND)
    sm.on_tick(tick(T0 + MIN, 120.2), 125.0)
    # 120.2 is below the refreshed band's trigger
    assert sm.phase == UpperBandPhase.IDLE
    sm.on_tick(tick(T0 + 2 * MIN, 125.2), 125.0)
    assert sm.state.associated_upper_band == 125.0


def test_injected_clock():
    now = [T0]
    sm = machine(clock=lambda: now[0])
    sm.on_tick(tick(0, 120.2), BAND)
    assert sm.state.state_start_time == T0
    now[0] = T0 + 15 * MIN
    sm.on_tick(tick(0, 120.2), BAND)
    assert sm.phase == UpperBandPhase.WAITING_FOR_RETURN


def test_reset():
    sm = machine()
    sm.on_tick(tick(T0, 120.2), BAND)
    sm.reset("stopped")
    assert sm.phase == UpperBandPhase.IDLE
    assert sm.state.state_start_time is None
