"""
Per-instance signal dispatch: persist, execute with retries, report back.

One asyncio.Lock per instance serialises broker calls so an exit never races an entry.
Reports are posted to the owning instance through a callback; nothing here touches
position state directly.
"""

from __future__ import annotations
import asyncio
import functools
import logging
from typing import Awaitable, Callable, Optional, Set, TypeVar

from hurst_trader.core.errors import BrokerError, FatalError, TraderError, TransientIOError
from hurst_trader.core.types import ExecutionReport, OrderSide, Signal, SignalStatus, SignalType
from hurst_trader.execution.base import Broker, OrderResult
from hurst_trader.storage.base import Store
from hurst_trader.utils.telegram import TelegramAlerter

logger = logging.getLogger("hurst_trader.execution.dispatcher")

T = TypeVar("T")


class SignalDispatcher:
    def __init__(
        self,
        instance_id: str,
        store: Store,
        broker: Optional[Broker] = None,
        on_report: Optional[Callable[[ExecutionReport], None]] = None,
        alerter: Optional[TelegramAlerter] = None,
        test_mode: bool = False,
        max_attempts: int = 5,
        base_delay: float = 1.0,
    ):
        self.instance_id = instance_id
        self.store = store
        self.broker = broker
        self.on_report = on_report
        self.alerter = alerter
        self.test_mode = test_mode
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._orders: Set[asyncio.Task] = set()
        self._closing = asyncio.Event()

    @property
    def in_flight(self) -> int:
        """Signals not yet resolved into a report."""
        return len(self._orders)

    @property
    def closing(self) -> bool:
        return self._closing.is_set()

    def submit(self, signal: Signal) -> asyncio.Task:
        """Dispatch in the background. Must be called from the event loop."""
        task = self.spawn(self._dispatch(signal), name=f"dispatch-{signal.id[:8]}")
        self._orders.add(task)
        task.add_done_callback(self._orders.discard)
        return task

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatch and persistence task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 30.0) -> int:
        """
        Stop retrying broker calls and wait for the dispatches still running.

        Backoff sleeps end at once with a failed report, queued signals are not sent, and a
        call already at the broker completes and reports. Dispatches still running after
        `timeout` are cancelled; returns how many, since their outcome at the exchange is unknown.
        """
        self._closing.set()
        orders = list(self._orders)
        if not orders:
            return 0
        _, pending = await asyncio.wait(orders, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.error("[%s] %d order call(s) still running after %.0fs were cancelled, outcome unknown",
                         self.instance_id, len(pending), timeout)
        return len(pending)

    def resume(self) -> None:
        self._closing.clear()

    async def with_retry(self, fn: Callable[[], Awaitable[T]], what: str, interruptible: bool = False) -> T:
        """
        Await fn(), retrying TransientIOError with exponential backoff.
        An interruptible retry gives up as soon as shutdown() starts.
        """
        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except TransientIOError as e:
                if attempt == self.max_attempts - 1 or (interruptible and self.closing):
                    logger.error("[%s] %s failed after %d attempt(s): %s", self.instance_id, what, attempt + 1, e)
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning("[%s] %s failed (%s), retry in %.1fs (attempt %d/%d)",
                               self.instance_id, what, e, delay, attempt + 1, self.max_attempts)
                if not interruptible:
                    await asyncio.sleep(delay)
                elif await self._backoff(delay):
                    logger.warning("[%s] %s: retry abandoned, shutting down", self.instance_id, what)
                    raise
        raise TransientIOError(f"{what}: no attempts made")

    async def _backoff(self, delay: float) -> bool:
        """Sleep for delay. True when shutdown started meanwhile."""
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _dispatch(self, signal: Signal) -> ExecutionReport:
        try:
            await self.with_retry(lambda: self.store.append_signal(signal), "persist signal")
        except TraderError as e:
            logger.error("[%s] could not persist signal %s: %s", self.instance_id, signal.id, e)

        report = await self._execute(signal)
        if report.success:
            status = SignalStatus.EXECUTED
        else:
            status = SignalStatus.REJECTED if signal.type == SignalType.ENTRY else SignalStatus.FAILED
        signal.status = status
        try:
            await self.with_retry(
                lambda: self.store.update_signal_status(signal.id, status, self._details(report)), "update signal"
            )
        except TraderError as e:
            logger.error("[%s] could not update signal %s: %s", self.instance_id, signal.id, e)

        if signal.type == SignalType.EXIT and not report.success and self.alerter:
            await self.alerter.alert(
                f"[{self.instance_id}] exit {signal.sub_type.value} for {signal.symbol} failed: {report.message}. "
                "Position stays closing, manual action required."
            )
        if self.on_report:
            self.on_report(report)
        return report

    async def _execute(self, signal: Signal) -> ExecutionReport:
        if self.test_mode:
            return self._simulated_fill(signal)
        if self.broker is None:
            return self._report(signal, success=False, message="no broker configured", fatal=True)
        if signal.type == SignalType.ENTRY:
            call = functools.partial(
                self.broker.place_market_order, signal.symbol, OrderSide.BUY, signal.quote_amount, signal.id
            )
        else:
            call = functools.partial(
                self.broker.close_position, signal.symbol, OrderSide.SELL, signal.base_amount, signal.id
            )
        try:
            async with self._lock:
                if self.closing:
                    return self._report(signal, success=False, message="instance stopping, order not sent")
                result: OrderResult = await self.with_retry(
                    lambda: asyncio.to_thread(call), f"{signal.type.value} {signal.sub_type.value}",
                    interruptible=True,
                )
        except FatalError as e:
            logger.error("[%s] fatal broker error: %s", self.instance_id, e)
            return self._report(signal, success=False, message=str(e), fatal=True)
        except (BrokerError, TransientIOError) as e:
            return self._report(signal, success=False, message=str(e))
        if not result.success:
            return self._report(signal, success=False, message=result.message or "order not filled")
        logger.info("[%s] %s %s executed: order=%s avg=%s qty=%s quote=%s", self.instance_id, signal.type.value,
                    signal.sub_type.value, result.order_id, result.avg_price, result.quantity, result.quote_quantity)
        return ExecutionReport(
            signal_id=signal.id,
            position_id=signal.position_id,
            type=signal.type,
            success=True,
            avg_fill_price=result.avg_price,
            filled_base=result.quantity,
            filled_quote=result.quote_quantity,
            order_id=result.order_id,
        )

    def _simulated_fill(self, signal: Signal) -> ExecutionReport:
        """Test mode: fill at the signal price without touching the broker."""
        base = signal.base_amount
        if base is None and signal.quote_amount:
            base = signal.quote_amount / signal.price
        quote = signal.quote_amount if signal.type == SignalType.ENTRY else base * signal.price
        logger.info("[%s] TEST MODE %s %s @ %.8g", self.instance_id, signal.type.value, signal.sub_type.value,
                    signal.price)
        return ExecutionReport(
            signal_id=signal.id,
            position_id=signal.position_id,
            type=signal.type,
            success=True,
            avg_fill_price=signal.price,
            filled_base=base,
            filled_quote=quote,
            order_id=f"test-{signal.id[:12]}",
        )

    @staticmethod
    def _report(signal: Signal, success: bool, message: str = "", fatal: bool = False) -> ExecutionReport:
        return ExecutionReport(
            signal_id=signal.id, position_id=signal.position_id, type=signal.type,
            success=success, message=message, fatal=fatal,
        )

    @staticmethod
    def _details(report: ExecutionReport) -> dict:
        return {
            "orderId": report.order_id,
            "avgFillPrice": report.avg_fill_price,
            "filledBase": report.filled_base,
            "filledQuote": report.filled_quote,
            "message": report.message,
        }
