"""
Two-phase upper-band exit.

idle -> exit_counting        high >= band * exit_factor
exit_counting -> idle        high <  band * exit_factor before the timer elapses
exit_counting -> waiting     exit_confirm_ms elapsed with the condition still met
waiting -> return_counting   low <= band * return_factor
return_counting -> waiting   low >  band * return_factor
return_counting -> idle      return_confirm_ms elapsed: exit fires

Timers run on stream time. At most one transition per tick.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, Optional

from hurst_trader.core.types import Tick, UpperBandPhase, UpperBandState

logger = logging.getLogger("hurst_trader.engine.upper_band")


class UpperBandStateMachine:
    def __init__(
        self,
        exit_trigger_factor: float = 1.001,
        return_trigger_factor: float = 0.999,
        exit_confirm_ms: int = 15 * 60 * 1000,
        return_confirm_ms: int = 15 * 60 * 1000,
        clock: Optional[Callable[[], int]] = None,
        name: str = "",
    ):
        self.exit_trigger_factor = exit_trigger_factor
        self.return_trigger_factor = return_trigger_factor
        self.exit_confirm_ms = exit_confirm_ms
        self.return_confirm_ms = return_confirm_ms
        self._clock = clock
        self._name = name
        self.state = UpperBandState()
        self._handlers: Dict[UpperBandPhase, Callable[[Tick, float, int], bool]] = {
            UpperBandPhase.IDLE: self._on_idle,
            UpperBandPhase.EXIT_COUNTING: self._on_exit_counting,
            UpperBandPhase.WAITING_FOR_RETURN: self._on_waiting_for_return,
            UpperBandPhase.RETURN_COUNTING: self._on_return_counting,
        }

    @property
    def phase(self) -> UpperBandPhase:
        return self.state.current_state

    @property
    def idle(self) -> bool:
        return self.state.current_state == UpperBandPhase.IDLE

    def exit_level(self, upper_band: float) -> float:
        return upper_band * self.exit_trigger_factor

    def return_level(self, upper_band: float) -> float:
        return upper_band * self.return_trigger_factor

    def on_tick(self, tick: Tick, upper_band: float, now: Optional[int] = None) -> bool:
        """Advance on one tick. Returns True when the confirmed return fires an exit."""
        if now is None:
            now = self._clock() if self._clock else tick.timestamp
        if not self.idle:
            self.state.associated_upper_band = upper_band
        return self._handlers[self.state.current_state](tick, upper_band, now)

    def reset(self, reason: str = "") -> None:
        if not self.idle:
            logger.info("%supper-band %s -> idle (%s)", self._prefix(), self.state.current_state.value, reason or "reset")
        self.state = UpperBandState()

    def _enter(self, phase: UpperBandPhase, now: int, upper_band: float, detail: str) -> None:
        logger.info("%supper-band %s -> %s | %s", self._prefix(), self.state.current_state.value, phase.value, detail)
        self.state.current_state = phase
        self.state.state_start_time = now
        self.state.associated_upper_band = upper_band

    def _on_idle(self, tick: Tick, band: float, now: int) -> bool:
        level = self.exit_level(band)
        if tick.high >= level:
            self._enter(UpperBandPhase.EXIT_COUNTING, now, band, f"high {tick.high:.8g} >= {level:.8g}")
        return False

    def _on_exit_counting(self, tick: Tick, band: float, now: int) -> bool:
        level = self.exit_level(band)
        if tick.high < level:
            self.reset(f"high {tick.high:.8g} fell below {level:.8g}")
        elif now - self.state.state_start_time >= self.exit_confirm_ms:
            self._enter(UpperBandPhase.WAITING_FOR_RETURN, now, band, "excursion confirmed")
        return False

    def _on_waiting_for_return(self, tick: Tick, band: float, now: int) -> bool:
        level = self.return_level(band)
        if tick.low <= level:
            self._enter(UpperBandPhase.RETURN_COUNTING, now, band, f"low {tick.low:.8g} <= {level:.8g}")
        return False

    def _on_return_counting(self, tick: Tick, band: float, now: int) -> bool:
        level = self.return_level(band)
        if tick.low > level:
            self._enter(UpperBandPhase.WAITING_FOR_RETURN, now, band, f"low {tick.low:.8g} back above {level:.8g}")
            return False
        if now - self.state.state_start_time >= self.return_confirm_ms:
            self.reset("return confirmed, exit")
            return True
        return False

    def _prefix(self) -> str:
        return f"[{self._name}] " if self._name else ""
