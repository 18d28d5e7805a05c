"""Store contract tests, run against the memory and SQLite stores."""

import asyncio

import pytest

from hurst_trader.core.types import (
    Entry,
    EntryType,
    ExitReason,
    Position,
    PositionStatus,
    Signal,
    SignalStatus,
    SignalType,
)
from hurst_trader.storage import InstanceRecord, MemoryStore, SqliteStore
from conftest import scenario_config


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(tmp_path / "store.sqlite3")


def open_position(pid="p1"):
    pos = Position(position_id=pid, symbol="BTCUSDT", status=PositionStatus.ACTIVE)
    pos.entries.append(Entry(1_000, 100.0, EntryType.FIRST, 0.1, 100.0, 1.0, "s1"))
    return pos


def test_instance_records(store):
    async def scenario():
        record = InstanceRecord(config=scenario_config(), active=True)
        assert record.available == 1000.0
        await store.save_instance(record)
        record.locked = 100.0
        record.available = 900.0
        await store.save_instance(record)
        loaded = await store.load_instance("btc-test")
        assert loaded.config == record.config
        assert (loaded.available, loaded.locked, loaded.active) == (900.0, 100.0, True)
        assert [r.instance_id for r in await store.load_instances()] == ["btc-test"]
        await store.delete_instance("btc-test")
        assert await store.load_instance("btc-test") is None

    asyncio.run(scenario())


def test_signals_append_query_update(store):
    async def scenario():
        s1 = Signal("btc-test", "BTCUSDT", SignalType.ENTRY, EntryType.FIRST, 101.0, 2_000, "p1",
                    allocation_fraction=0.1, quote_amount=100.0, metadata={"lowerBand": 100.0})
        s2 = Signal("btc-test", "BTCUSDT", SignalType.EXIT, ExitReason.TRAILING_STOP, 107.7, 3_000, "p1",
                    profit=5.0, profit_percent=5.0)
        other = Signal("other", "ETHUSDT", SignalType.ENTRY, EntryType.FIRST, 10.0, 2_500, "p9")
        for s in (s2, s1, other):
            await store.append_signal(s)
        await store.append_signal(s1)
        all_signals = await store.query_signals("btc-test")
        assert [s.id for s in all_signals] == [s1.id, s2.id]
        assert all_signals[0].metadata == {"lowerBand": 100.0}
        exits = await store.query_signals("btc-test", type=SignalType.EXIT)
        assert [s.sub_type for s in exits] == [ExitReason.TRAILING_STOP]
        assert await store.query_signals("btc-test", since=2_500) == [s2]
        await store.update_signal_status(s2.id, SignalStatus.EXECUTED, {"orderId": "42"})
        exits = await store.query_signals("btc-test", type=SignalType.EXIT)
        assert exits[0].status == SignalStatus.EXECUTED

    asyncio.run(scenario())


def test_open_position_round_trip_and_close(store):
    async def scenario():
        pos = open_position()
        pos.above_mid_seen = True
        await store.save_open_position("btc-test", pos)
        loaded = await store.load_open_position("btc-test")
        assert loaded == pos
        assert await store.load_open_position("other") is None
        await store.close_position("p1", {"exitReason": "manual", "profit": 1.5})
        assert await store.load_open_position("btc-test") is None

    asyncio.run(scenario())


def test_latest_open_position_wins(store):
    async def scenario():
        await store.save_open_position("btc-test", open_position("old"))
        await store.close_position("old", {"profit": 0.0})
        newer = open_position("new")
        await store.save_open_position("btc-test", newer)
        newer.status = PositionStatus.CLOSING
        await store.save_open_position("btc-test", newer)
        loaded = await store.load_open_position("btc-test")
        assert loaded.position_id == "new"
        assert loaded.status == PositionStatus.CLOSING

    asyncio.run(scenario())


def test_sqlite_survives_reopen(tmp_path):
    async def scenario():
        path = tmp_path / "db.sqlite3"
        first = SqliteStore(path)
        await first.save_open_position("btc-test", open_position())
        await first.close()
        second = SqliteStore(path)
        loaded = await second.load_open_position("btc-test")
        await second.close()
        return loaded

    assert asyncio.run(scenario()) == open_position()
