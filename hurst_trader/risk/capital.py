"""
Per-instance capital ledger: available vs locked quote balance.
Entry size = allocation fraction * (available + locked), i.e. of the instance's working capital.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from hurst_trader.core.config import CapitalAllocation
from hurst_trader.core.errors import ConsistencyError, PreconditionError
from hurst_trader.core.types import EntryType

logger = logging.getLogger("hurst_trader.risk.capital")

_EPS = 1e-9


@dataclass
class AllocationResult:
    """Result of sizing an entry: allowed or rejected + reason."""
    allowed: bool
    quote_amount: float = 0.0
    reason: str = ""


class CapitalLedger:
    def __init__(
        self,
        initial_capital: float,
        allocation: CapitalAllocation,
        min_notional: float = 0.0,
        available: Optional[float] = None,
        locked: float = 0.0,
    ):
        self.initial_capital = initial_capital
        self.allocation = allocation
        self.min_notional = min_notional
        self.available = initial_capital if available is None else available
        self.locked = locked

    @property
    def total(self) -> float:
        return self.available + self.locked

    @property
    def roi_percent(self) -> float:
        if self.initial_capital <= 0:
            return 0.0
        return (self.total - self.initial_capital) / self.initial_capital * 100

    def size_entry(self, entry_type: EntryType) -> AllocationResult:
        fraction = self.allocation.fraction(entry_type)
        amount = fraction * self.total
        if amount <= 0:
            return AllocationResult(allowed=False, reason="zero allocation")
        if amount < self.min_notional:
            return AllocationResult(allowed=False, reason=f"notional {amount:.2f} < min {self.min_notional}")
        if amount > self.available + _EPS:
            return AllocationResult(
                allowed=False, reason=f"insufficient funds: need {amount:.2f}, available {self.available:.2f}"
            )
        return AllocationResult(allowed=True, quote_amount=amount)

    def lock(self, amount: float) -> float:
        """Move a filled entry's quote from available to locked. Returns the amount locked."""
        if amount <= 0:
            raise PreconditionError(f"cannot lock {amount}")
        if amount > self.available + _EPS:
            logger.warning("Fill %.2f exceeds available %.2f, locking what is left", amount, self.available)
            amount = max(self.available, 0.0)
        self.available -= amount
        self.locked += amount
        return amount

    def settle(self, entry_quote: float, exit_quote: float) -> float:
        """Release the locked entry capital and credit the exit proceeds. Returns realised profit."""
        released = min(entry_quote, self.locked)
        self.locked -= released
        if self.locked < _EPS:
            self.locked = 0.0
        self.available += exit_quote
        profit = exit_quote - entry_quote
        logger.info("Capital settled: profit=%.2f available=%.2f locked=%.2f", profit, self.available, self.locked)
        return profit

    def check(self, has_open_position: bool) -> None:
        """Raise ConsistencyError when funds are locked with no open position."""
        if not has_open_position and self.locked > _EPS:
            raise ConsistencyError(f"locked {self.locked:.2f} with no open position")

    def sync_available(self, exchange_available: float) -> bool:
        """Cap available at the free exchange balance. Returns True if it changed."""
        if self.available <= exchange_available + _EPS:
            return False
        logger.warning("Available %.2f exceeds exchange balance %.2f, capping", self.available, exchange_available)
        self.available = max(exchange_available, 0.0)
        return True

    def self_heal(self, has_open_position: bool) -> bool:
        """Locked funds with no open position are returned to available."""
        if has_open_position or self.locked <= _EPS:
            return False
        logger.warning("Locked %.2f with no open position, releasing to available", self.locked)
        self.available += self.locked
        self.locked = 0.0
        return True

    def restore(self, available: float, locked: float) -> None:
        self.available = available
        self.locked = locked

    def to_dict(self) -> dict:
        return {"initialCapital": self.initial_capital, "available": self.available, "locked": self.locked}
