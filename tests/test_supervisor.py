"""Supervisor lifecycle tests against the in-memory store."""

import asyncio

import pytest

from hurst_trader.core.errors import PreconditionError, ValidationError
from hurst_trader.core.types import ExitReason, PositionStatus, Signal, SignalStatus, SignalType, Tick
from hurst_trader.runtime import Supervisor
from hurst_trader.storage import MemoryStore
from conftest import D0, MIN, FakeMarketData, make_candles, scenario_config, scenario_history, wait_for


class RecordingAlerter:
    def __init__(self):
        self.messages = []

    async def alert(self, text):
        self.messages.append(text)
        return False


def touch_ticks():
    return [
        Tick("BTCUSDT", 112.0, D0 + MIN),
        Tick("BTCUSDT", 101.0, D0 + 2 * MIN, high=101.0, low=99.95),
    ]


def supervisor(market_data=None, alerter=None):
    return Supervisor(MemoryStore(), market_data or FakeMarketData(scenario_history()), alerter=alerter,
                      dispatch_base_delay=0.0)


def test_create_start_stop():
    async def scenario():
        sup = supervisor()
        await sup.create_instance(scenario_config())
        assert await sup.start_instance("btc-test") is True
        assert sup.running == ["btc-test"]
        assert sup.snapshot("btc-test")["running"] is True
        record = await sup.store.load_instance("btc-test")
        assert record.active is True and record.last_error is None
        await sup.stop_instance("btc-test")
        record = await sup.store.load_instance("btc-test")
        return sup, record

    sup, record = asyncio.run(scenario())
    assert sup.running == []
    assert record.active is False


def test_create_rejects_invalid_config():
    cfg = scenario_config()
    cfg.hurst.periods = 3

    async def scenario():
        with pytest.raises(ValidationError) as exc:
            await supervisor().create_instance(cfg)
        return exc.value

    err = asyncio.run(scenario())
    assert any("hurst.periods" in e for e in err.errors)


def test_update_keeps_financials():
    async def scenario():
        sup = supervisor()
        record = await sup.create_instance(scenario_config())
        record.available, record.locked = 700.0, 300.0
        await sup.store.save_instance(record)
        await sup.create_instance(scenario_config(min_entry_time_gap=3 * 60 * MIN))
        return await sup.store.load_instance("btc-test")

    record = asyncio.run(scenario())
    assert (record.available, record.locked) == (700.0, 300.0)
    assert record.config.signals.min_entry_time_gap == 3 * 60 * MIN


def test_start_failure_is_recorded_and_alerted():
    alerter = RecordingAlerter()
    short = FakeMarketData({"1d": make_candles([110.0] * 10)})

    async def scenario():
        sup = supervisor(short, alerter)
        await sup.create_instance(scenario_config())
        ok = await sup.start_instance("btc-test")
        return ok, await sup.store.load_instance("btc-test")

    ok, record = asyncio.run(scenario())
    assert ok is False
    assert record.active is False
    assert "need 25" in record.last_error
    assert len(alerter.messages) == 1


def test_start_unknown_instance():
    with pytest.raises(PreconditionError):
        asyncio.run(supervisor().start_instance("nope"))


def test_restore_starts_only_active_instances():
    async def scenario():
        sup = supervisor()
        await sup.create_instance(scenario_config())
        idle = scenario_config()
        idle.instance_id = "idle"
        await sup.create_instance(idle)
        record = await sup.store.load_instance("btc-test")
        record.active = True
        await sup.store.save_instance(record)
        started = await sup.restore()
        running = sup.running
        await sup.stop_all()
        after = await sup.store.load_instance("btc-test")
        return started, running, after

    started, running, after = asyncio.run(scenario())
    assert started == ["btc-test"]
    assert running == ["btc-test"]
    assert after.active is True


def test_manual_exit_and_stats():
    async def scenario():
        sup = supervisor(FakeMarketData(scenario_history(), touch_ticks()))
        await sup.create_instance(scenario_config(enable_trailing_stop=False))
        await sup.start_instance("btc-test")
        orch = sup.get("btc-test")
        await wait_for(lambda: orch.positions.status == PositionStatus.ACTIVE)

        with pytest.raises(PreconditionError, match="open position"):
            await sup.delete_instance("btc-test")

        sup.request_manual_exit("btc-test")
        await wait_for(lambda: orch.positions.status == PositionStatus.NONE)
        await wait_for(lambda: any(s["type"] == "exit" and s["status"] == "executed"
                                   for s in sup.store.signals.values()))
        stats = await sup.get_stats("btc-test")
        await sup.stop_all()
        return stats

    stats = asyncio.run(scenario())
    assert stats.total_trades == 1
    assert stats.by_reason == {"manual": {"trades": 1, "profit": pytest.approx(0.0, abs=1e-6)}}


def test_stats_count_only_executed_exits():
    async def scenario():
        sup = supervisor()
        await sup.create_instance(scenario_config())
        won = Signal("btc-test", "BTCUSDT", SignalType.EXIT, ExitReason.UPPER_BAND_RETURN, 119.0, 1, "p1",
                     profit=18.0, profit_percent=18.0, status=SignalStatus.EXECUTED)
        lost = Signal("btc-test", "BTCUSDT", SignalType.EXIT, ExitReason.TRAILING_STOP, 98.0, 2, "p2",
                      profit=-2.0, profit_percent=-2.0, status=SignalStatus.EXECUTED)
        failed = Signal("btc-test", "BTCUSDT", SignalType.EXIT, ExitReason.MANUAL, 90.0, 3, "p3",
                        profit=-10.0, profit_percent=-10.0, status=SignalStatus.FAILED)
        for s in (won, lost, failed):
            await sup.store.append_signal(s)
        return await sup.get_stats("btc-test")

    stats = asyncio.run(scenario())
    assert stats.total_trades == 2
    assert stats.total_profit == pytest.approx(16.0)
    assert stats.win_rate_pct == pytest.approx(50.0)
    assert stats.roi_pct == pytest.approx(1.6)


def test_delete_instance():
    async def scenario():
        sup = supervisor()
        await sup.create_instance(scenario_config())
        await sup.start_instance("btc-test")
        await sup.delete_instance("btc-test")
        return sup

    sup = asyncio.run(scenario())
    assert sup.store.instances == {}
    with pytest.raises(PreconditionError):
        sup.get("btc-test")
