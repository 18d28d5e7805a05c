"""
Position state machine: none -> active -> closing -> closed, then a fresh position.

Entries and exits are two-step: begin_* when the signal is emitted, confirm_* / reject_*
when the execution report arrives. Only one signal may be in flight at a time.
"""

from __future__ import annotations
import logging
from typing import Optional

from hurst_trader.core.errors import PreconditionError
from hurst_trader.core.types import (
    Entry,
    ExecutionReport,
    ExitReason,
    Position,
    PositionStatus,
    Signal,
    SignalType,
    new_id,
)

logger = logging.getLogger("hurst_trader.engine.position")


class PositionStateMachine:
    def __init__(self, instance_id: str, symbol: str):
        self.instance_id = instance_id
        self.symbol = symbol
        self.position = Position(position_id=new_id(), symbol=symbol)
        self.pending: Optional[Signal] = None

    @property
    def status(self) -> PositionStatus:
        return self.position.status

    @property
    def entry_pending(self) -> bool:
        return self.pending is not None and self.pending.type == SignalType.ENTRY

    def can_enter(self) -> bool:
        return (
            self.pending is None
            and self.position.status in (PositionStatus.NONE, PositionStatus.ACTIVE)
            and self.position.next_entry_type is not None
        )

    def can_exit(self) -> bool:
        """Active, or closing after a failed exit that nothing is retrying."""
        if self.pending is not None:
            return False
        return self.position.status in (PositionStatus.ACTIVE, PositionStatus.CLOSING)

    def begin_entry(self, signal: Signal) -> None:
        if signal.type != SignalType.ENTRY:
            raise PreconditionError(f"not an entry signal: {signal.type.value}")
        if not self.can_enter():
            raise PreconditionError(f"entry not allowed while {self.position.status.value} (pending={self.pending is not None})")
        expected = self.position.next_entry_type
        if signal.sub_type != expected:
            raise PreconditionError(f"expected {expected.value} entry, got {signal.sub_type.value}")
        if signal.position_id != self.position.position_id:
            raise PreconditionError("entry signal belongs to another position")
        last = self.position.last_entry_time
        if last is not None and signal.timestamp <= last:
            raise PreconditionError("entries must be in strict time order")
        self.pending = signal

    def confirm_entry(self, report: ExecutionReport) -> Entry:
        signal = self._take_pending(report, SignalType.ENTRY)
        price = report.avg_fill_price or signal.price
        quote = report.filled_quote if report.filled_quote else signal.quote_amount
        base = report.filled_base if report.filled_base else quote / price
        entry = Entry(
            time=signal.timestamp,
            price=price,
            type=signal.sub_type,
            allocation_fraction=signal.allocation_fraction,
            quote_amount=quote,
            base_amount=base,
            signal_id=signal.id,
        )
        pos = self.position
        pos.entries.append(entry)
        pos.status = PositionStatus.ACTIVE
        pos.above_mid_seen = False
        logger.info(
            "[%s] %s entry filled @ %.8g quote=%.2f base=%.8g | avg=%.8g entries=%d",
            self.instance_id, entry.type.value, price, quote, base, pos.entry_avg_price, len(pos.entries),
        )
        return entry

    def reject_entry(self, report: ExecutionReport) -> Signal:
        signal = self._take_pending(report, SignalType.ENTRY)
        logger.warning(
            "[%s] %s entry rejected: %s", self.instance_id, signal.sub_type.value, report.message or "broker failure"
        )
        return signal

    def begin_exit(self, signal: Signal) -> None:
        if signal.type != SignalType.EXIT:
            raise PreconditionError(f"not an exit signal: {signal.type.value}")
        if not self.can_exit():
            raise PreconditionError(f"exit not allowed while {self.position.status.value}")
        if signal.position_id != self.position.position_id:
            raise PreconditionError("exit signal belongs to another position")
        self.position.status = PositionStatus.CLOSING
        self.position.exit_reason = signal.sub_type
        self.pending = signal
        logger.info("[%s] closing position %s (%s) @ %.8g", self.instance_id, self.position.position_id,
                    signal.sub_type.value, signal.price)

    def confirm_exit(self, report: ExecutionReport) -> Position:
        """Close and archive the position; a fresh one takes its place. Returns the closed position."""
        signal = self._take_pending(report, SignalType.EXIT)
        closed = self.position
        price = report.avg_fill_price or signal.price
        if report.filled_quote:
            exit_quote = report.filled_quote
        else:
            exit_quote = (report.filled_base or closed.total_base) * price
        invested = closed.total_quote
        closed.status = PositionStatus.CLOSED
        closed.exit_reason = ExitReason(signal.sub_type)
        closed.exit_price = price
        closed.exit_time = signal.timestamp
        closed.exit_quote = exit_quote
        closed.profit = exit_quote - invested
        closed.profit_percent = (closed.profit / invested * 100) if invested > 0 else 0.0
        closed.peak_price_since_armed = None
        closed.trailing_armed_at = None
        logger.info(
            "[%s] position %s closed (%s) @ %.8g profit=%.2f (%.2f%%)",
            self.instance_id, closed.position_id, closed.exit_reason.value, price, closed.profit, closed.profit_percent,
        )
        self.position = Position(position_id=new_id(), symbol=self.symbol)
        return closed

    def fail_exit(self, report: ExecutionReport) -> Signal:
        """Broker could not close. The position stays closing until a human retries."""
        signal = self._take_pending(report, SignalType.EXIT)
        logger.error("[%s] exit for %s failed, position stays closing: %s",
                     self.instance_id, self.position.position_id, report.message)
        return signal

    def clear_pending(self) -> Optional[Signal]:
        """Drop an in-flight signal whose dispatch was cancelled."""
        signal, self.pending = self.pending, None
        return signal

    def mark_above_mid(self) -> None:
        if self.position.status == PositionStatus.ACTIVE and not self.position.above_mid_seen:
            self.position.above_mid_seen = True
            logger.info("[%s] price reclaimed mid band after %s entry", self.instance_id,
                        self.position.entries[-1].type.value)

    def restore(self, position: Position) -> None:
        """Rebuild from the store on start. Only open positions are restored."""
        if position.status not in (PositionStatus.ACTIVE, PositionStatus.CLOSING):
            raise PreconditionError(f"cannot restore a {position.status.value} position")
        if not position.entries or len(position.entries) > 3:
            raise PreconditionError(f"restored position has {len(position.entries)} entries")
        self.position = position
        self.pending = None
        logger.info("[%s] restored %s position %s with %d entries", self.instance_id,
                    position.status.value, position.position_id, len(position.entries))

    def _take_pending(self, report: ExecutionReport, kind: SignalType) -> Signal:
        pending = self.pending
        if pending is None or pending.id != report.signal_id or pending.type != kind:
            raise PreconditionError(f"no pending {kind.value} signal {report.signal_id}")
        self.pending = None
        return pending
