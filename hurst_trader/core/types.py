"""
Core data types: ticks, candles, indicator snapshots, positions and signals.
State and kind fields are enums so handlers can dispatch on them exhaustively.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class SignalType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class EntryType(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"

    @property
    def rank(self) -> int:
        return ENTRY_SEQUENCE.index(self)


ENTRY_SEQUENCE = (EntryType.FIRST, EntryType.SECOND, EntryType.THIRD)


class ExitReason(str, Enum):
    UPPER_BAND_RETURN = "upperBandReturn"
    TRAILING_STOP = "trailingStop"
    MANUAL = "manual"


class PositionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class UpperBandPhase(str, Enum):
    IDLE = "idle"
    EXIT_COUNTING = "exit_counting"
    WAITING_FOR_RETURN = "waiting_for_return"
    RETURN_COUNTING = "return_counting"


class TrendSlope(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class SignalStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    REJECTED = "rejected"
    FAILED = "failed"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Tick:
    """Live price update. high/low default to price when the feed has none."""
    symbol: str
    price: float
    timestamp: int
    high: Optional[float] = None
    low: Optional[float] = None
    volume: float = 0.0

    def __post_init__(self) -> None:
        if self.high is None:
            object.__setattr__(self, "high", self.price)
        if self.low is None:
            object.__setattr__(self, "low", self.price)


@dataclass(frozen=True)
class Candle:
    """OHLCV candle. Times are epoch ms; close_time = open_time + period - 1."""
    interval: str
    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    is_closed: bool = True


@dataclass(frozen=True)
class HurstChannel:
    upper_band: float
    lower_band: float
    mid_band: float
    hurst_exponent: float
    sigma: float
    computed_at: int
    source_candle_close_time: int


@dataclass(frozen=True)
class EmaTrend:
    value: float
    slope: TrendSlope
    computed_at: int
    previous: Optional[float] = None


@dataclass(frozen=True)
class Entry:
    time: int
    price: float
    type: EntryType
    allocation_fraction: float
    quote_amount: float
    base_amount: float
    signal_id: str = ""

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "price": self.price,
            "type": self.type.value,
            "allocationFraction": self.allocation_fraction,
            "quoteAmount": self.quote_amount,
            "baseAmount": self.base_amount,
            "signalId": self.signal_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Entry":
        return cls(
            time=int(data["time"]),
            price=float(data["price"]),
            type=EntryType(data["type"]),
            allocation_fraction=float(data["allocationFraction"]),
            quote_amount=float(data["quoteAmount"]),
            base_amount=float(data["baseAmount"]),
            signal_id=data.get("signalId", ""),
        )


@dataclass
class Position:
    """Staged long position. At most three entries, strictly first -> second -> third."""
    position_id: str
    symbol: str
    status: PositionStatus = PositionStatus.NONE
    entries: List[Entry] = field(default_factory=list)
    peak_price_since_armed: Optional[float] = None
    trailing_armed_at: Optional[int] = None
    above_mid_seen: bool = False
    exit_reason: Optional[ExitReason] = None
    exit_price: Optional[float] = None
    exit_time: Optional[int] = None
    exit_quote: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None

    @property
    def total_base(self) -> float:
        return sum(e.base_amount for e in self.entries)

    @property
    def total_quote(self) -> float:
        return sum(e.quote_amount for e in self.entries)

    @property
    def allocation_fraction(self) -> float:
        return sum(e.allocation_fraction for e in self.entries)

    @property
    def entry_avg_price(self) -> float:
        """Entry prices weighted by quote amount."""
        total = self.total_quote
        if total <= 0:
            return 0.0
        return sum(e.price * e.quote_amount for e in self.entries) / total

    @property
    def first_entry_time(self) -> Optional[int]:
        return self.entries[0].time if self.entries else None

    @property
    def last_entry_time(self) -> Optional[int]:
        return self.entries[-1].time if self.entries else None

    @property
    def next_entry_type(self) -> Optional[EntryType]:
        n = len(self.entries)
        return ENTRY_SEQUENCE[n] if n < len(ENTRY_SEQUENCE) else None

    def to_dict(self) -> dict:
        return {
            "positionId": self.position_id,
            "symbol": self.symbol,
            "status": self.status.value,
            "entries": [e.to_dict() for e in self.entries],
            "peakPriceSinceArmed": self.peak_price_since_armed,
            "trailingArmedAt": self.trailing_armed_at,
            "aboveMidSeen": self.above_mid_seen,
            "exitReason": self.exit_reason.value if self.exit_reason else None,
            "exitPrice": self.exit_price,
            "exitTime": self.exit_time,
            "exitQuote": self.exit_quote,
            "profit": self.profit,
            "profitPercent": self.profit_percent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        reason = data.get("exitReason")
        return cls(
            position_id=data["positionId"],
            symbol=data["symbol"],
            status=PositionStatus(data.get("status", "none")),
            entries=[Entry.from_dict(e) for e in data.get("entries", [])],
            peak_price_since_armed=data.get("peakPriceSinceArmed"),
            trailing_armed_at=data.get("trailingArmedAt"),
            above_mid_seen=bool(data.get("aboveMidSeen", False)),
            exit_reason=ExitReason(reason) if reason else None,
            exit_price=data.get("exitPrice"),
            exit_time=data.get("exitTime"),
            exit_quote=data.get("exitQuote"),
            profit=data.get("profit"),
            profit_percent=data.get("profitPercent"),
        )


@dataclass
class UpperBandState:
    current_state: UpperBandPhase = UpperBandPhase.IDLE
    state_start_time: Optional[int] = None
    associated_upper_band: Optional[float] = None


SubType = Union[EntryType, ExitReason]


@dataclass
class Signal:
    """Entry or exit decision emitted by an instance."""
    instance_id: str
    symbol: str
    type: SignalType
    sub_type: SubType
    price: float
    timestamp: int
    position_id: str
    allocation_fraction: Optional[float] = None
    quote_amount: Optional[float] = None
    base_amount: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    metadata: dict = field(default_factory=dict)
    status: SignalStatus = SignalStatus.PENDING
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instanceId": self.instance_id,
            "symbol": self.symbol,
            "type": self.type.value,
            "subType": self.sub_type.value,
            "price": self.price,
            "timestamp": self.timestamp,
            "positionId": self.position_id,
            "allocationFraction": self.allocation_fraction,
            "quoteAmount": self.quote_amount,
            "baseAmount": self.base_amount,
            "profit": self.profit,
            "profitPercent": self.profit_percent,
            "metadata": dict(self.metadata),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Signal":
        kind = SignalType(data["type"])
        sub: SubType = EntryType(data["subType"]) if kind == SignalType.ENTRY else ExitReason(data["subType"])
        return cls(
            id=data["id"],
            instance_id=data["instanceId"],
            symbol=data["symbol"],
            type=kind,
            sub_type=sub,
            price=float(data["price"]),
            timestamp=int(data["timestamp"]),
            position_id=data["positionId"],
            allocation_fraction=data.get("allocationFraction"),
            quote_amount=data.get("quoteAmount"),
            base_amount=data.get("baseAmount"),
            profit=data.get("profit"),
            profit_percent=data.get("profitPercent"),
            metadata=dict(data.get("metadata") or {}),
            status=SignalStatus(data.get("status", "pending")),
        )


@dataclass(frozen=True)
class ExecutionReport:
    """Outcome of a dispatched signal, posted back to the owning instance."""
    signal_id: str
    position_id: str
    type: SignalType
    success: bool
    avg_fill_price: Optional[float] = None
    filled_base: Optional[float] = None
    filled_quote: Optional[float] = None
    order_id: Optional[str] = None
    message: str = ""
    fatal: bool = False
