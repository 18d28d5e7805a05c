"""Unit tests for risk.capital."""

import pytest

from hurst_trader.core.config import CapitalAllocation
from hurst_trader.core.errors import ConsistencyError, PreconditionError
from hurst_trader.core.types import EntryType
from hurst_trader.risk.capital import AllocationResult, CapitalLedger


def test_entry_sizes_follow_allocation():
    ledger = CapitalLedger(1000.0, CapitalAllocation())
    r = ledger.size_entry(EntryType.FIRST)
    assert isinstance(r, AllocationResult)
    assert r.allowed is True
    assert r.quote_amount == pytest.approx(100.0)
    ledger.lock(100.0)
    # sized on available + locked, not on what is left
    assert ledger.size_entry(EntryType.SECOND).quote_amount == pytest.approx(250.0)
    ledger.lock(250.0)
    assert ledger.size_entry(EntryType.THIRD).quote_amount == pytest.approx(500.0)


def test_insufficient_funds_rejected():
    ledger = CapitalLedger(1000.0, CapitalAllocation(), available=50.0, locked=950.0)
    r = ledger.size_entry(EntryType.FIRST)
    assert r.allowed is False
    assert "insufficient" in r.reason


def test_min_notional_rejected():
    ledger = CapitalLedger(20.0, CapitalAllocation(), min_notional=5.0)
    r = ledger.size_entry(EntryType.FIRST)
    assert r.allowed is False
    assert "notional" in r.reason


def test_lock_and_settle():
    ledger = CapitalLedger(1000.0, CapitalAllocation())
    ledger.lock(100.0)
    assert (ledger.available, ledger.locked) == (900.0, 100.0)
    profit = ledger.settle(entry_quote=100.0, exit_quote=110.0)
    assert profit == pytest.approx(10.0)
    assert ledger.locked == 0.0
    assert ledger.available == pytest.approx(1010.0)
    assert ledger.roi_percent == pytest.approx(1.0)


def test_lock_rejects_non_positive():
    ledger = CapitalLedger(1000.0, CapitalAllocation())
    with pytest.raises(PreconditionError):
        ledger.lock(0.0)


def test_self_heal_releases_orphaned_lock():
    ledger = CapitalLedger(1000.0, CapitalAllocation(), available=900.0, locked=100.0)
    assert ledger.self_heal(has_open_position=True) is False
    assert ledger.locked == 100.0
    assert ledger.self_heal(has_open_position=False) is True
    assert (ledger.available, ledger.locked) == (1000.0, 0.0)


def test_check_flags_lock_without_position():
    ledger = CapitalLedger(1000.0, CapitalAllocation(), available=900.0, locked=100.0)
    ledger.check(has_open_position=True)
    with pytest.raises(ConsistencyError, match="locked 100.00"):
        ledger.check(has_open_position=False)
    ledger.self_heal(has_open_position=False)
    ledger.check(has_open_position=False)


def test_sync_available_caps_at_exchange_balance():
    ledger = CapitalLedger(1000.0, CapitalAllocation())
    assert ledger.sync_available(2000.0) is False
    assert ledger.available == 1000.0
    assert ledger.sync_available(400.0) is True
    assert ledger.available == 400.0
    assert ledger.sync_available(-1.0) is True
    assert ledger.available == 0.0
