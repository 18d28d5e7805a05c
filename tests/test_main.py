"""Tests for wiring in main.build_supervisor."""

import asyncio

import pytest

import main
from hurst_trader.core.config import Config


class RecordingClient:
    built = []

    def __init__(self, api_key="", api_secret="", testnet=False):
        self.built.append((type(self).__name__, api_key, testnet))


class RecordingMarketData(RecordingClient):
    pass


class RecordingBroker(RecordingClient):
    pass


@pytest.fixture
def recorded(monkeypatch):
    RecordingClient.built = []
    monkeypatch.setattr(main, "BinanceMarketData", RecordingMarketData)
    monkeypatch.setattr(main, "BinanceSpotBroker", RecordingBroker)
    return RecordingClient.built


@pytest.mark.parametrize("testnet", [True, False])
def test_market_data_and_broker_follow_testnet_flag(tmp_path, recorded, testnet):
    config = Config("key", "secret", use_testnet=testnet, store_path=tmp_path / "s.sqlite3")
    supervisor = main.build_supervisor(config)
    asyncio.run(supervisor.store.close())
    assert recorded == [("RecordingMarketData", "key", testnet), ("RecordingBroker", "key", testnet)]
    assert isinstance(supervisor.broker, RecordingBroker)


def test_no_keys_means_no_broker(tmp_path, recorded):
    config = Config(use_testnet=True, store_path=tmp_path / "s.sqlite3")
    supervisor = main.build_supervisor(config)
    asyncio.run(supervisor.store.close())
    assert recorded == [("RecordingMarketData", "", True)]
    assert supervisor.broker is None
