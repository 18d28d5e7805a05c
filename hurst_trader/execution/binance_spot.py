"""
Binance Spot broker and market data with retry and error translation.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import AsyncIterator, Dict, List, Optional, Tuple

import pandas as pd
import requests

from binance import AsyncClient, BinanceSocketManager
from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from hurst_trader.core.errors import BrokerError, FatalError, TraderError, TransientIOError
from hurst_trader.core.types import Candle, OrderSide, Tick
from hurst_trader.execution.base import Balance, Broker, MarketData, OrderResult
from hurst_trader.utils.exchange_filters import SymbolFilters, parse_symbol_filters, round_quantity, round_quote
from hurst_trader.utils.timeframes import timeframe_ms

logger = logging.getLogger("hurst_trader.execution.binance")

_AUTH_CODES = (-2014, -2015)


def translate_error(e: BinanceAPIException) -> TraderError:
    """Map an exchange error onto the retry/stop/reject taxonomy."""
    if e.status_code >= 500 or e.status_code in (429, 418):
        return TransientIOError(f"binance {e.status_code}: {e.message}")
    if e.status_code == 401 or e.code in _AUTH_CODES:
        return FatalError(f"binance auth failure ({e.code}): {e.message}")
    return BrokerError(f"binance {e.code}: {e.message}")


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry on 429 or 418 (rate limit)."""
    def decorator(f):
        def wrapped(*args, **kwargs):
            last_exc = None
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    last_exc = e
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise translate_error(e) from e
                except (BinanceRequestException, requests.RequestException) as e:
                    raise TransientIOError(str(e)) from e
            raise translate_error(last_exc) from last_exc
        return wrapped
    return decorator


def _is_duplicate(err: BrokerError) -> bool:
    return "duplicate" in str(err).lower()


class BinanceSpotBroker(Broker):
    """Binance Spot market orders (testnet and live)."""

    def __init__(self, api_key: str, api_secret: str, testnet: bool = True):
        self._client = Client(api_key, api_secret, testnet=testnet)
        logger.info("Binance Spot: using %s", "TESTNET" if testnet else "LIVE")
        self._filters: Dict[str, SymbolFilters] = {}

    @retry_on_rate_limit(max_retries=2)
    def get_symbol_info(self, symbol: str) -> Optional[dict]:
        return self._client.get_symbol_info(symbol)

    def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        if symbol not in self._filters:
            self._filters[symbol] = parse_symbol_filters(self.get_symbol_info(symbol))
        return self._filters[symbol]

    @retry_on_rate_limit(max_retries=2)
    def get_balance(self, asset: str) -> Balance:
        res = self._client.get_asset_balance(asset=asset) or {}
        return Balance(asset=asset, available=float(res.get("free", 0.0)), locked=float(res.get("locked", 0.0)))

    def place_market_order(self, symbol: str, side: OrderSide, quote_amount: float, client_order_id: str) -> OrderResult:
        filters = self.get_symbol_filters(symbol)
        qty = round_quote(quote_amount, filters.quote_precision)
        if qty < filters.min_notional:
            return OrderResult(success=False, message=f"quote {qty} < min notional {filters.min_notional}")
        return self._submit(symbol, client_order_id, side=side.value, type="MARKET", quoteOrderQty=f"{qty:.8f}")

    def close_position(self, symbol: str, side: OrderSide, base_amount: float, client_order_id: str) -> OrderResult:
        filters = self.get_symbol_filters(symbol)
        qty = round_quantity(base_amount, filters.min_qty, filters.lot_step)
        if qty <= 0:
            return OrderResult(success=False, message=f"quantity {base_amount} rounds to 0")
        return self._submit(symbol, client_order_id, side=side.value, type="MARKET", quantity=f"{qty:.8f}")

    def _submit(self, symbol: str, client_order_id: str, **params) -> OrderResult:
        try:
            res = self._create_order(symbol=symbol, newClientOrderId=client_order_id, **params)
        except BrokerError as e:
            if not _is_duplicate(e):
                logger.error("Binance order rejected: %s", e)
                return OrderResult(success=False, message=str(e))
            # an earlier attempt already reached the exchange
            logger.info("Order %s already placed, fetching it", client_order_id)
            res = self._get_order(symbol=symbol, origClientOrderId=client_order_id)
        return self._to_result(res)

    @retry_on_rate_limit(max_retries=3)
    def _create_order(self, **params) -> dict:
        return self._client.create_order(**params)

    @retry_on_rate_limit(max_retries=3)
    def _get_order(self, **params) -> dict:
        return self._client.get_order(**params)

    @staticmethod
    def _to_result(res: dict) -> OrderResult:
        executed = float(res.get("executedQty") or 0.0)
        quote = float(res.get("cummulativeQuoteQty") or 0.0)
        return OrderResult(
            success=executed > 0,
            order_id=str(res.get("orderId")),
            avg_price=quote / executed if executed else None,
            quantity=executed,
            quote_quantity=quote,
            message=res.get("status", ""),
        )


def klines_to_candles(df: pd.DataFrame, interval: str) -> List[Candle]:
    return [
        Candle(
            interval=interval,
            open_time=int(row.open_time),
            close_time=int(row.close_time),
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for row in df.itertuples(index=False)
    ]


class BinanceMarketData(MarketData):
    """REST klines for bootstrap and a 1m kline websocket for ticks."""

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = False,
        stream_interval: str = "1m",
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
    ):
        self._api_key = api_key or None
        self._api_secret = api_secret or None
        self._testnet = testnet
        self._client = Client(self._api_key, self._api_secret, testnet=testnet)
        self.stream_interval = stream_interval
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_klines(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        raw = self._client.get_klines(symbol=symbol, interval=interval, limit=limit)
        df = pd.DataFrame(raw, columns=[
            "open_time", "open", "high", "low", "close", "volume",
            "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore"
        ])
        df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
        df[["open_time", "close_time"]] = df[["open_time", "close_time"]].astype("int64")
        return df[["open_time", "close_time", "open", "high", "low", "close", "volume"]]

    def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        # one extra row because the newest kline is usually still open
        df = self.get_klines(symbol, interval, limit + 1)
        now_ms = int(time.time() * 1000)
        df = df[df["close_time"] < now_ms]
        candles = klines_to_candles(df.tail(limit), interval)
        expected = timeframe_ms(interval)
        for c in candles:
            if c.close_time - c.open_time + 1 != expected:
                logger.warning("Unexpected %s kline span at %d", interval, c.open_time)
        return candles

    async def stream(self, symbol: str) -> AsyncIterator[Tick]:
        delay = self.reconnect_delay
        cumulative: Dict[str, Tuple[int, float]] = {}
        while True:
            client = await AsyncClient.create(self._api_key, self._api_secret, testnet=self._testnet)
            try:
                bsm = BinanceSocketManager(client)
                async with bsm.kline_socket(symbol, interval=self.stream_interval) as socket:
                    logger.info("Kline stream connected for %s", symbol)
                    delay = self.reconnect_delay
                    while True:
                        msg = await socket.recv()
                        tick = self.parse_kline_message(symbol, msg, cumulative)
                        if tick is not None:
                            yield tick
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Kline stream for %s dropped: %s, reconnecting in %.1fs", symbol, e, delay)
            finally:
                await client.close_connection()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    @staticmethod
    def parse_kline_message(symbol: str, msg: dict, cumulative: Dict[str, Tuple[int, float]]) -> Optional[Tick]:
        """Convert a kline event into a Tick. Volume is the delta since the previous event."""
        if not msg:
            return None
        if msg.get("e") == "error":
            raise TransientIOError(f"stream error: {msg.get('m') or msg.get('type')}")
        k = msg.get("k")
        if msg.get("e") != "kline" or not k:
            return None
        open_time = int(k["t"])
        volume = float(k["v"])
        prev = cumulative.get(symbol)
        delta = volume - prev[1] if prev and prev[0] == open_time else volume
        cumulative[symbol] = (open_time, volume)
        return Tick(
            symbol=symbol,
            price=float(k["c"]),
            timestamp=int(msg.get("E") or k["T"]),
            high=float(k["h"]),
            low=float(k["l"]),
            volume=max(delta, 0.0),
        )
