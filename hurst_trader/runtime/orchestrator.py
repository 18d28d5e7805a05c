"""
One running strategy instance: ticks in, signals out.

All state changes happen on a single worker task that drains the inbox (ticks, execution
reports, manual exit requests), so the engine needs no locking. on_tick() and
apply_report() are plain synchronous methods and can be driven directly.

Per tick: candles -> indicators -> exits (upper band, then trailing stop) -> entries.
"""

from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from hurst_trader.core.config import InstanceConfig
from hurst_trader.core.errors import ConsistencyError, FatalError, PreconditionError, TraderError, TransientIOError
from hurst_trader.core.logger import ThrottledLog
from hurst_trader.core.types import (
    Candle,
    ExecutionReport,
    ExitReason,
    Position,
    PositionStatus,
    Signal,
    SignalType,
    Tick,
)
from hurst_trader.engine import PositionStateMachine, TrailingStopController, UpperBandStateMachine
from hurst_trader.execution.base import Broker, MarketData
from hurst_trader.execution.dispatcher import SignalDispatcher
from hurst_trader.risk.capital import CapitalLedger
from hurst_trader.storage.base import InstanceRecord, Store
from hurst_trader.strategies import EntryCandidate, HurstReversionStrategy, MarketContext
from hurst_trader.indicators import CandleAggregator, EmaTrendIndicator, HurstChannelIndicator
from hurst_trader.utils.telegram import TelegramAlerter

logger = logging.getLogger("hurst_trader.runtime.orchestrator")

_STOP = object()
_MANUAL_EXIT = object()


class InstanceOrchestrator:
    def __init__(
        self,
        config: InstanceConfig,
        market_data: Optional[MarketData] = None,
        store: Optional[Store] = None,
        broker: Optional[Broker] = None,
        alerter: Optional[TelegramAlerter] = None,
        staleness_tolerance_ms: int = 2000,
        dispatch_max_attempts: int = 5,
        dispatch_base_delay: float = 1.0,
        dedupe_window: int = 1024,
    ):
        self.config = config
        self.instance_id = config.instance_id
        self.symbol = config.symbol
        self.market_data = market_data
        self.store = store
        self.broker = broker
        self.alerter = alerter
        self.staleness_tolerance_ms = staleness_tolerance_ms

        intervals = list(dict.fromkeys([config.hurst.interval, config.ema.interval]))
        history = max(config.hurst.periods, config.ema.periods) * 4
        self.aggregator = CandleAggregator(intervals, history_size=history)
        self.hurst = HurstChannelIndicator(
            config.hurst.periods, config.hurst.upper_deviation_factor, config.hurst.lower_deviation_factor
        )
        self.ema = EmaTrendIndicator(config.ema.periods, config.ema.slope_dead_band)
        self.strategy = HurstReversionStrategy(config)

        s = config.signals
        self.positions = PositionStateMachine(self.instance_id, self.symbol)
        self.trailing = TrailingStopController(s.trailing_stop, s.trailing_stop_delay, s.enable_trailing_stop)
        self.upper_band = UpperBandStateMachine(
            s.exit_trigger_factor, s.return_trigger_factor, s.exit_confirm_ms, s.return_confirm_ms,
            name=self.instance_id,
        )
        self.ledger = CapitalLedger(config.initial_capital, config.capital_allocation)

        self.dispatcher: Optional[SignalDispatcher] = None
        if store is not None:
            self.dispatcher = SignalDispatcher(
                self.instance_id, store, broker,
                on_report=self.post, alerter=alerter, test_mode=config.test_mode,
                max_attempts=dispatch_max_attempts, base_delay=dispatch_base_delay,
            )

        self._dedupe_window = dedupe_window
        self._seen: Deque[int] = deque()
        self._seen_set: Set[int] = set()
        self.clock: Optional[int] = None
        self.last_tick: Optional[Tick] = None
        self.last_error: Optional[str] = None
        self.bootstrapped = False
        self.running = False
        self.recent_signals: Deque[Signal] = deque(maxlen=50)
        self._inbox: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._feed: Optional[asyncio.Task] = None
        self._stopper: Optional[asyncio.Task] = None
        self._deferred_exit: Optional[ExitReason] = None
        self._throttled = ThrottledLog(logger)

    # ---- bootstrap -------------------------------------------------------

    def bootstrap(self, history: Dict[str, List[Candle]]) -> None:
        """Seed candles and indicators from closed history keyed by interval."""
        for interval in self.aggregator.intervals:
            self.aggregator.bootstrap(interval, history.get(interval, []))
        hurst_candles = self.aggregator.closed(self.config.hurst.interval)
        ema_candles = self.aggregator.closed(self.config.ema.interval)
        now = max((c[-1].close_time for c in (hurst_candles, ema_candles) if c), default=0)
        channel = self.hurst.bootstrap(hurst_candles[-self.config.hurst.periods:], now)
        if channel is None:
            raise FatalError(
                f"[{self.instance_id}] need {self.config.hurst.periods} closed {self.config.hurst.interval} "
                f"candles, got {len(hurst_candles)}"
            )
        trend = self.ema.bootstrap(ema_candles, now)
        if trend is None and self.config.signals.check_ema_trend:
            raise FatalError(
                f"[{self.instance_id}] need {self.config.ema.periods} closed {self.config.ema.interval} "
                f"candles for the EMA filter, got {len(ema_candles)}"
            )
        self.bootstrapped = True
        logger.info(
            "[%s] bootstrapped %s: lower=%.8g mid=%.8g upper=%.8g H=%.3f ema=%s",
            self.instance_id, self.symbol, channel.lower_band, channel.mid_band, channel.upper_band,
            channel.hurst_exponent, f"{trend.value:.8g}/{trend.slope.value}" if trend else "n/a",
        )

    async def _load_history(self) -> Dict[str, List[Candle]]:
        if self.market_data is None:
            raise FatalError(f"[{self.instance_id}] no market data source")
        limits = {self.config.hurst.interval: self.config.hurst.periods}
        ema_limit = self.config.ema.periods * 3
        limits[self.config.ema.interval] = max(limits.get(self.config.ema.interval, 0), ema_limit)
        history = {}
        for interval, limit in limits.items():
            history[interval] = await asyncio.to_thread(self.market_data.get_candles, self.symbol, interval, limit)
        return history

    # ---- tick pipeline ---------------------------------------------------

    def on_tick(self, tick: Tick) -> List[Signal]:
        """Process one tick. Returns the signals it produced (at most one)."""
        if tick.symbol != self.symbol:
            logger.warning("[%s] tick for %s ignored", self.instance_id, tick.symbol)
            return []
        if not self.bootstrapped:
            self._throttled.debug(f"{self.instance_id}:not-ready", 30, "[%s] tick before bootstrap ignored",
                                  self.instance_id)
            return []
        if tick.timestamp in self._seen_set:
            logger.debug("[%s] duplicate tick %d ignored", self.instance_id, tick.timestamp)
            return []
        if self.clock is not None and tick.timestamp < self.clock - self.staleness_tolerance_ms:
            logger.warning("[%s] stale tick %d dropped (clock %d)", self.instance_id, tick.timestamp, self.clock)
            return []
        self._remember(tick.timestamp)
        now = tick.timestamp if self.clock is None else max(self.clock, tick.timestamp)
        self.clock = now
        self.last_tick = tick

        for candle in self.aggregator.on_tick(tick):
            self._on_candle_closed(candle, now)

        signal = self._evaluate(tick, now)
        if signal is None:
            return []
        self._emit(signal)
        return [signal]

    def _remember(self, timestamp: int) -> None:
        self._seen.append(timestamp)
        self._seen_set.add(timestamp)
        while len(self._seen) > self._dedupe_window:
            self._seen_set.discard(self._seen.popleft())

    def _on_candle_closed(self, candle: Candle, now: int) -> None:
        if candle.interval == self.config.hurst.interval:
            channel = self.hurst.on_candle_closed(candle, now)
            if channel:
                logger.info("[%s] %s close %.8g -> bands %.8g / %.8g / %.8g", self.instance_id, candle.interval,
                            candle.close, channel.lower_band, channel.mid_band, channel.upper_band)
        if candle.interval == self.config.ema.interval:
            self.ema.on_candle_closed(candle, now)

    def _evaluate(self, tick: Tick, now: int) -> Optional[Signal]:
        channel = self.hurst.snapshot
        pos = self.positions.position

        if pos.status != PositionStatus.ACTIVE:
            if not self.upper_band.idle:
                self.upper_band.reset("no active position")
        else:
            reason = None
            if channel is not None and self.upper_band.on_tick(tick, channel.upper_band, now):
                reason = ExitReason.UPPER_BAND_RETURN
            elif self.trailing.on_tick(pos, tick, now):
                reason = ExitReason.TRAILING_STOP
            if self.positions.pending is None:
                reason = self._deferred_exit or reason
                if reason is not None:
                    return self._exit(reason, tick.price, now)
            elif reason is not None and self._deferred_exit is None:
                # an entry is in flight; close once it resolves
                self._deferred_exit = reason
                logger.info("[%s] %s exit held until the pending entry resolves", self.instance_id, reason.value)

        det = self.strategy.evaluate(MarketContext(
            tick=tick,
            channel=channel,
            trend=self.ema.snapshot,
            position=pos,
            entry_pending=self.positions.entry_pending,
            now=now,
        ))
        if det.mid_reclaimed:
            self.positions.mark_above_mid()
        if det.entry is None:
            return None
        return self._entry(det.entry, now)

    def _entry(self, candidate: EntryCandidate, now: int) -> Optional[Signal]:
        alloc = self.ledger.size_entry(candidate.entry_type)
        if not alloc.allowed:
            self._throttled.log(f"{self.instance_id}:alloc", 60, logging.WARNING,
                                "[%s] %s entry rejected: %s", self.instance_id, candidate.entry_type.value,
                                alloc.reason)
            return None
        pos = self.positions.position
        signal = Signal(
            instance_id=self.instance_id,
            symbol=self.symbol,
            type=SignalType.ENTRY,
            sub_type=candidate.entry_type,
            price=candidate.price,
            timestamp=now,
            position_id=pos.position_id,
            allocation_fraction=candidate.allocation_fraction,
            quote_amount=alloc.quote_amount,
            base_amount=alloc.quote_amount / candidate.price,
            metadata=dict(candidate.metadata),
        )
        try:
            self.positions.begin_entry(signal)
        except PreconditionError as e:
            logger.warning("[%s] entry signal dropped: %s", self.instance_id, e)
            return None
        logger.info("[%s] ENTRY %s %s @ %.8g quote=%.2f (%.0f%%)", self.instance_id, candidate.entry_type.value,
                    self.symbol, candidate.price, alloc.quote_amount, candidate.allocation_fraction * 100)
        return signal

    def _exit(self, reason: ExitReason, price: float, now: int) -> Signal:
        pos = self.positions.position
        base = pos.total_base
        invested = pos.total_quote
        proceeds = base * price
        profit = proceeds - invested
        metadata = {
            "entryAvgPrice": pos.entry_avg_price,
            "entries": len(pos.entries),
            "totalEntryQuote": invested,
            "peakPrice": pos.peak_price_since_armed,
            "trailingStopPrice": self.trailing.stop_price(pos),
        }
        channel = self.hurst.snapshot
        if channel is not None:
            metadata["upperBand"] = channel.upper_band
            metadata["midBand"] = channel.mid_band
        signal = Signal(
            instance_id=self.instance_id,
            symbol=self.symbol,
            type=SignalType.EXIT,
            sub_type=reason,
            price=price,
            timestamp=now,
            position_id=pos.position_id,
            allocation_fraction=pos.allocation_fraction,
            quote_amount=proceeds,
            base_amount=base,
            profit=profit,
            profit_percent=(profit / invested * 100) if invested > 0 else 0.0,
            metadata=metadata,
        )
        self.positions.begin_exit(signal)
        self._deferred_exit = None
        self.upper_band.reset(f"{reason.value} exit")
        self.trailing.disarm(pos)
        logger.info("[%s] EXIT %s %s @ %.8g est. profit=%.2f (%.2f%%)", self.instance_id, reason.value,
                    self.symbol, price, profit, signal.profit_percent)
        self._persist_position()
        return signal

    def _emit(self, signal: Signal) -> None:
        self.recent_signals.append(signal)
        if self.dispatcher is not None:
            self.dispatcher.submit(signal)

    # ---- execution feedback ----------------------------------------------

    def apply_report(self, report: ExecutionReport) -> None:
        pending = self.positions.pending
        if pending is None or pending.id != report.signal_id:
            logger.warning("[%s] report for unknown signal %s ignored", self.instance_id, report.signal_id)
            return
        if report.type == SignalType.ENTRY:
            if report.success:
                entry = self.positions.confirm_entry(report)
                self.ledger.lock(entry.quote_amount)
                self._persist_position()
            else:
                self.positions.reject_entry(report)
        elif report.success:
            closed = self.positions.confirm_exit(report)
            self.ledger.settle(closed.total_quote, closed.exit_quote)
            if self.dispatcher is not None:
                self.dispatcher.spawn(self._store_closed(closed.position_id, {
                    "exitReason": closed.exit_reason.value,
                    "exitPrice": closed.exit_price,
                    "exitTime": closed.exit_time,
                    "exitQuote": closed.exit_quote,
                    "profit": closed.profit,
                    "profitPercent": closed.profit_percent,
                }))
        else:
            self.positions.fail_exit(report)
            self.last_error = f"exit failed: {report.message}"
            self._persist_position()
        self._persist_record()
        if report.fatal:
            self.last_error = report.message or "fatal broker error"
            logger.error("[%s] fatal execution error, stopping: %s", self.instance_id, self.last_error)
            if self.running:
                self._stopper = asyncio.get_running_loop().create_task(self._fatal_stop())

    def manual_exit(self) -> Signal:
        """Close the current position at the last traded price."""
        if self.last_tick is None or self.clock is None:
            raise PreconditionError(f"[{self.instance_id}] no price yet for a manual exit")
        if not self.positions.can_exit():
            raise PreconditionError(
                f"[{self.instance_id}] nothing to close ({self.positions.status.value}, "
                f"pending={self.positions.pending is not None})"
            )
        signal = self._exit(ExitReason.MANUAL, self.last_tick.price, self.clock)
        self._emit(signal)
        return signal

    # ---- persistence -----------------------------------------------------

    def _persist_position(self) -> None:
        if self.dispatcher is None:
            return
        position = self.positions.position
        snapshot = Position.from_dict(position.to_dict())
        self.dispatcher.spawn(
            self._guarded(lambda: self.store.save_open_position(self.instance_id, snapshot), "save position")
        )

    def _persist_record(self) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.spawn(self._guarded(self._save_record, "save instance"))

    async def _save_record(self) -> None:
        record = await self.store.load_instance(self.instance_id) or InstanceRecord(config=self.config)
        record.available = self.ledger.available
        record.locked = self.ledger.locked
        record.last_error = self.last_error
        await self.store.save_instance(record)

    async def _store_closed(self, position_id: str, details: dict) -> None:
        await self._guarded(lambda: self.store.close_position(position_id, details), "close position")

    async def _guarded(self, fn: Callable[[], Awaitable], what: str) -> None:
        try:
            await self.dispatcher.with_retry(fn, what)
        except TraderError as e:
            self.last_error = f"{what}: {e}"
            logger.error("[%s] %s failed: %s", self.instance_id, what, e)

    # ---- lifecycle -------------------------------------------------------

    def post(self, event) -> None:
        """Queue a tick, report or control event for the worker."""
        if self._inbox is None:
            raise PreconditionError(f"[{self.instance_id}] not running")
        self._inbox.put_nowait(event)

    def request_manual_exit(self) -> None:
        self.post(_MANUAL_EXIT)

    async def start(self) -> None:
        if self.running:
            return
        try:
            self.config.validate()
            if not self.config.test_mode and self.broker is None:
                raise FatalError(f"[{self.instance_id}] live mode needs a broker")
            filters = None
            if self.broker is not None:
                filters = await asyncio.to_thread(self.broker.get_symbol_filters, self.symbol)
                self.ledger.min_notional = filters.min_notional
            self.bootstrap(await self._load_history())
            await self._rehydrate()
            if filters is not None and not self.config.test_mode:
                await self._sync_balance(filters.quote_asset)
        except TraderError as e:
            self.last_error = str(e)
            logger.error("[%s] start failed: %s", self.instance_id, e)
            raise
        if self.dispatcher is not None:
            self.dispatcher.resume()
        self._inbox = asyncio.Queue()
        self.running = True
        self._worker = asyncio.create_task(self._run(), name=f"worker-{self.instance_id}")
        self._feed = asyncio.create_task(self._pump(), name=f"feed-{self.instance_id}")
        logger.info("[%s] started on %s%s", self.instance_id, self.symbol, " (TEST MODE)" if self.config.test_mode else "")

    async def _rehydrate(self) -> None:
        if self.store is None:
            return
        record = await self.store.load_instance(self.instance_id)
        if record is not None:
            self.ledger.restore(record.available, record.locked)
        position = await self.store.load_open_position(self.instance_id)
        if position is not None:
            self.positions.restore(position)
            self.trailing.disarm(self.positions.position)
        try:
            self.ledger.check(has_open_position=position is not None)
        except ConsistencyError as e:
            logger.warning("[%s] %s, self-healing", self.instance_id, e)
            self.ledger.self_heal(has_open_position=position is not None)
            await self._save_record()

    async def _sync_balance(self, asset: str) -> None:
        """Cap the ledger's available funds at the exchange balance."""
        if not asset:
            return
        try:
            balance = await asyncio.to_thread(self.broker.get_balance, asset)
        except TransientIOError as e:
            logger.warning("[%s] balance sync skipped: %s", self.instance_id, e)
            return
        if self.ledger.sync_available(balance.available):
            await self._save_record()

    async def stop(self) -> None:
        """
        Stop the feed and let orders already at the broker finish; their reports are applied
        before the worker exits and persistence is flushed. Pending retries are abandoned.
        An open position stays open and is restored on next start.
        """
        if not self.running:
            return
        self.running = False
        if self._feed is not None:
            self._feed.cancel()
            await asyncio.gather(self._feed, return_exceptions=True)
        if self.dispatcher is not None:
            await self.dispatcher.shutdown()
        if self._worker is not None and self._inbox is not None:
            self._inbox.put_nowait(_STOP)
            await asyncio.gather(self._worker, return_exceptions=True)
        if self.dispatcher is not None:
            await self.dispatcher.drain()
        dropped = self.positions.clear_pending()
        if dropped is not None:
            logger.warning("[%s] in-flight %s signal %s abandoned on stop", self.instance_id, dropped.type.value,
                           dropped.id)
        self._deferred_exit = None
        self.trailing.disarm(self.positions.position)
        self.upper_band.reset("instance stopped")
        self._inbox = None
        self._throttled.forget(self.instance_id)
        logger.info("[%s] stopped (position %s)", self.instance_id, self.positions.status.value)

    async def _fatal_stop(self) -> None:
        await self.stop()
        if self.alerter:
            await self.alerter.alert(f"[{self.instance_id}] stopped: {self.last_error}")

    async def _run(self) -> None:
        while True:
            event = await self._inbox.get()
            if event is _STOP:
                break
            try:
                if isinstance(event, ExecutionReport):
                    self.apply_report(event)
                elif not self.running:
                    logger.debug("[%s] stopping, %s dropped", self.instance_id, type(event).__name__)
                elif isinstance(event, Tick):
                    self.on_tick(event)
                elif event is _MANUAL_EXIT:
                    self.manual_exit()
            except Exception as e:
                self.last_error = str(e)
                logger.exception("[%s] event error: %s", self.instance_id, e)

    async def _pump(self) -> None:
        try:
            async for tick in self.market_data.stream(self.symbol):
                self.post(tick)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = f"feed: {e}"
            logger.exception("[%s] feed stopped: %s", self.instance_id, e)

    # ---- observation -----------------------------------------------------

    def get_state(self) -> dict:
        """Read-only snapshot for external observers."""
        pos = self.positions.position
        channel = self.hurst.snapshot
        trend = self.ema.snapshot
        pending = self.positions.pending
        ub = self.upper_band.state
        return {
            "instanceId": self.instance_id,
            "symbol": self.symbol,
            "running": self.running,
            "bootstrapped": self.bootstrapped,
            "testMode": self.config.test_mode,
            "lastPrice": self.last_tick.price if self.last_tick else None,
            "lastTickTime": self.clock,
            "lastError": self.last_error,
            "hurstChannel": None if channel is None else {
                "upperBand": channel.upper_band,
                "midBand": channel.mid_band,
                "lowerBand": channel.lower_band,
                "hurstExponent": channel.hurst_exponent,
                "sigma": channel.sigma,
                "computedAt": channel.computed_at,
            },
            "emaTrend": None if trend is None else {
                "value": trend.value, "slope": trend.slope.value, "computedAt": trend.computed_at,
            },
            "position": dict(pos.to_dict(), entryAvgPrice=pos.entry_avg_price, totalBase=pos.total_base,
                             totalQuote=pos.total_quote),
            # entries count only once filled; an unfilled entry shows here
            "pendingSignal": None if pending is None else {
                "id": pending.id,
                "type": pending.type.value,
                "subType": pending.sub_type.value,
                "price": pending.price,
                "timestamp": pending.timestamp,
            },
            "deferredExit": self._deferred_exit.value if self._deferred_exit else None,
            "upperBandState": {
                "currentState": ub.current_state.value,
                "stateStartTime": ub.state_start_time,
                "associatedUpperBand": ub.associated_upper_band,
            },
            "trailingStop": {
                "enabled": self.trailing.enabled,
                "armedAt": pos.trailing_armed_at,
                "peak": pos.peak_price_since_armed,
                "stopPrice": self.trailing.stop_price(pos),
            },
            "financials": self.ledger.to_dict(),
        }
