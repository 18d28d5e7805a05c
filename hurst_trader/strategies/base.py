"""Abstract strategy: evaluates one tick against indicator snapshots and position state."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from hurst_trader.core.types import EmaTrend, EntryType, HurstChannel, Position, Tick


@dataclass(frozen=True)
class MarketContext:
    """Everything a strategy may look at for one tick. No lookahead."""
    tick: Tick
    channel: Optional[HurstChannel]
    trend: Optional[EmaTrend]
    position: Position
    entry_pending: bool
    now: int


@dataclass(frozen=True)
class EntryCandidate:
    entry_type: EntryType
    price: float
    allocation_fraction: float
    metadata: dict = field(default_factory=dict)


@dataclass
class Detection:
    entry: Optional[EntryCandidate] = None
    mid_reclaimed: bool = False
    blocked: Optional[str] = None


class BaseStrategy(ABC):
    """Strategy maps a MarketContext to at most one entry candidate."""

    @abstractmethod
    def evaluate(self, ctx: MarketContext) -> Detection:
        """
        Return a Detection for this tick. Must not mutate ctx.position;
        the caller applies mid_reclaimed and sizes/emits the entry.
        """
        pass
