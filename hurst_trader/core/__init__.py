"""Core: config, types, errors, logging."""

from hurst_trader.core.config import load_config, Config, InstanceConfig
from hurst_trader.core.errors import (
    TraderError,
    TransientIOError,
    ValidationError,
    PreconditionError,
    ConsistencyError,
    FatalError,
    BrokerError,
)
from hurst_trader.core.types import (
    Candle,
    EmaTrend,
    Entry,
    EntryType,
    ExecutionReport,
    ExitReason,
    HurstChannel,
    Position,
    PositionStatus,
    Signal,
    SignalStatus,
    SignalType,
    Tick,
    TrendSlope,
    UpperBandPhase,
    UpperBandState,
)
from hurst_trader.core.logger import setup_logging, ThrottledLog

__all__ = [
    "load_config",
    "Config",
    "InstanceConfig",
    "TraderError",
    "TransientIOError",
    "ValidationError",
    "PreconditionError",
    "ConsistencyError",
    "FatalError",
    "BrokerError",
    "Candle",
    "EmaTrend",
    "Entry",
    "EntryType",
    "ExecutionReport",
    "ExitReason",
    "HurstChannel",
    "Position",
    "PositionStatus",
    "Signal",
    "SignalStatus",
    "SignalType",
    "Tick",
    "TrendSlope",
    "UpperBandPhase",
    "UpperBandState",
    "setup_logging",
    "ThrottledLog",
]
