"""Persistence interface for instances, signals and open positions."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from hurst_trader.core.config import InstanceConfig
from hurst_trader.core.types import Position, Signal, SignalStatus, SignalType


@dataclass
class InstanceRecord:
    """Stored instance: configuration, run flag and capital ledger."""
    config: InstanceConfig
    active: bool = False
    available: Optional[float] = None
    locked: float = 0.0
    last_error: Optional[str] = None

    @property
    def instance_id(self) -> str:
        return self.config.instance_id

    def __post_init__(self) -> None:
        if self.available is None:
            self.available = self.config.initial_capital

    def to_dict(self) -> dict:
        return {
            "config": self.config.to_dict(),
            "active": self.active,
            "financials": {"available": self.available, "locked": self.locked},
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstanceRecord":
        financials = data.get("financials") or {}
        return cls(
            config=InstanceConfig.from_dict(data["config"]),
            active=bool(data.get("active", False)),
            available=financials.get("available"),
            locked=float(financials.get("locked", 0.0)),
            last_error=data.get("lastError"),
        )


class Store(ABC):
    """
    Async store. Implementations raise TransientIOError for retryable failures
    (locked database, connection loss) and FatalError when the store is unusable.
    """

    @abstractmethod
    async def load_instances(self) -> List[InstanceRecord]:
        pass

    @abstractmethod
    async def load_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        pass

    @abstractmethod
    async def save_instance(self, record: InstanceRecord) -> None:
        pass

    @abstractmethod
    async def delete_instance(self, instance_id: str) -> None:
        """Remove the instance with its signals and positions."""
        pass

    @abstractmethod
    async def append_signal(self, signal: Signal) -> None:
        """Insert a signal. Appending the same id twice is a no-op."""
        pass

    @abstractmethod
    async def update_signal_status(self, signal_id: str, status: SignalStatus, details: Optional[dict] = None) -> None:
        pass

    @abstractmethod
    async def query_signals(
        self, instance_id: str, type: Optional[SignalType] = None, since: Optional[int] = None
    ) -> List[Signal]:
        """Signals for an instance, oldest first."""
        pass

    @abstractmethod
    async def save_open_position(self, instance_id: str, position: Position) -> None:
        pass

    @abstractmethod
    async def load_open_position(self, instance_id: str) -> Optional[Position]:
        pass

    @abstractmethod
    async def close_position(self, position_id: str, exit_details: dict) -> None:
        """Mark a stored position closed and attach the exit details."""
        pass

    async def close(self) -> None:
        pass
