"""Risk management: capital ledger and entry sizing."""

from hurst_trader.risk.capital import AllocationResult, CapitalLedger

__all__ = ["AllocationResult", "CapitalLedger"]
