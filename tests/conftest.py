"""Shared fixtures: a channel with lower=100, mid=110, upper=120 and a daily-candle instance config."""

import asyncio
import math

import pytest

from hurst_trader.core.config import EmaSettings, HurstSettings, InstanceConfig, SignalSettings
from hurst_trader.core.types import Candle
from hurst_trader.execution.base import MarketData
from hurst_trader.utils.timeframes import timeframe_ms

DAY = 86_400_000
D0 = 1_704_067_200_000  # 2024-01-01 00:00 UTC
MIN = 60_000
HOUR = 60 * MIN


def band_closes(mid: float = 110.0, sigma: float = 5.0, n: int = 25) -> list:
    """n closes with mean `mid` and population std `sigma` (n odd)."""
    half = (n - 1) // 2
    d = sigma * math.sqrt(n / (2 * half))
    return [mid - d] * half + [mid + d] * half + [mid]


def make_candles(closes, end: int = D0, interval: str = "1d") -> list:
    """Closed flat candles of `interval` ending just before `end`."""
    period = timeframe_ms(interval)
    start = end - len(closes) * period
    out = []
    for i, c in enumerate(closes):
        open_time = start + i * period
        out.append(Candle(interval, open_time, open_time + period - 1, c, c, c, c, 1.0))
    return out


def scenario_history() -> dict:
    # 5 leading candles so the EMA (30) is ready; the channel uses the last 25
    return {"1d": make_candles([110.0] * 5 + band_closes())}


def scenario_config(**signals) -> InstanceConfig:
    return InstanceConfig(
        instance_id="btc-test",
        symbol="BTCUSDT",
        hurst=HurstSettings(interval="1d", periods=25),
        ema=EmaSettings(interval="1d", periods=30),
        signals=SignalSettings(**signals),
        initial_capital=1000.0,
        test_mode=True,
    )


class FakeMarketData(MarketData):
    """Serves fixed history and replays ticks, then idles."""

    def __init__(self, history: dict, ticks=()):
        self.history = history
        self.ticks = list(ticks)

    def get_candles(self, symbol, interval, limit):
        return self.history.get(interval, [])[-limit:]

    async def stream(self, symbol):
        for tick in self.ticks:
            yield tick
            await asyncio.sleep(0)
        await asyncio.Event().wait()


async def wait_for(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def config():
    return scenario_config()


@pytest.fixture
def history():
    return scenario_history()
