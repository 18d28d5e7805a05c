"""Engine: position lifecycle, trailing stop, upper-band exit."""

from hurst_trader.engine.position import PositionStateMachine
from hurst_trader.engine.trailing_stop import TrailingStopController
from hurst_trader.engine.upper_band import UpperBandStateMachine

__all__ = ["PositionStateMachine", "TrailingStopController", "UpperBandStateMachine"]
