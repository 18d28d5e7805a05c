"""Storage: instance records, signal history and open positions."""

from hurst_trader.storage.base import InstanceRecord, Store
from hurst_trader.storage.memory import MemoryStore
from hurst_trader.storage.sqlite import SqliteStore

__all__ = ["InstanceRecord", "Store", "MemoryStore", "SqliteStore"]
