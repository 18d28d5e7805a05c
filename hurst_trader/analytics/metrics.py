"""
Trade statistics from executed exit signals: win rate, profit factor, expectancy, drawdown, ROI.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

import numpy as np

from hurst_trader.core.types import Signal, SignalType


@dataclass
class SignalStats:
    """Aggregate results of closed positions for one instance."""
    total_trades: int
    profitable_trades: int
    losing_trades: int
    win_rate_pct: float
    total_profit: float
    average_profit: float
    average_profit_pct: float
    max_profit_pct: float
    max_loss_pct: float
    profit_factor: float
    expectancy: float
    max_drawdown_pct: float
    roi_pct: float
    by_reason: dict

    def to_dict(self) -> dict:
        return asdict(self)


def max_drawdown(cumulative_returns: List[float]) -> float:
    """Max drawdown in percent (e.g. -15.0 = 15% below the running peak)."""
    if not cumulative_returns:
        return 0.0
    arr = np.array(cumulative_returns)
    peak = np.maximum.accumulate(arr)
    dd = (arr - peak) / np.where(peak != 0, peak, 1)
    return float(np.min(dd)) * 100.0


def win_rate(pnls: List[float]) -> float:
    """Fraction of trades with positive PnL."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: List[float]) -> float:
    """Gross profit / gross loss. Returns inf if there are wins and no losses."""
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def expectancy(pnls: List[float]) -> float:
    """Average PnL per trade."""
    if not pnls:
        return 0.0
    return sum(pnls) / len(pnls)


def signal_stats(exits: Iterable[Signal], initial_capital: Optional[float] = None) -> SignalStats:
    """
    Statistics over exit signals in time order. Non-exit signals are ignored.
    Drawdown and ROI are measured on initial_capital when given.
    """
    exits = sorted((s for s in exits if s.type == SignalType.EXIT), key=lambda s: s.timestamp)
    pnls = [s.profit or 0.0 for s in exits]
    pcts = [s.profit_percent or 0.0 for s in exits]
    by_reason: dict = {}
    for s in exits:
        bucket = by_reason.setdefault(s.sub_type.value, {"trades": 0, "profit": 0.0})
        bucket["trades"] += 1
        bucket["profit"] += s.profit or 0.0

    total = sum(pnls)
    base = initial_capital if initial_capital and initial_capital > 0 else None
    if base is not None:
        equity = list(np.cumsum([base] + pnls))
        drawdown = max_drawdown(equity)
        roi = total / base * 100.0
    else:
        drawdown = 0.0
        roi = 0.0
    n = len(pnls)
    return SignalStats(
        total_trades=n,
        profitable_trades=sum(1 for p in pnls if p > 0),
        losing_trades=sum(1 for p in pnls if p < 0),
        win_rate_pct=win_rate(pnls) * 100.0,
        total_profit=total,
        average_profit=total / n if n else 0.0,
        average_profit_pct=sum(pcts) / n if n else 0.0,
        max_profit_pct=max(pcts) if pcts else 0.0,
        max_loss_pct=min(pcts) if pcts else 0.0,
        profit_factor=profit_factor(pnls),
        expectancy=expectancy(pnls),
        max_drawdown_pct=drawdown,
        roi_pct=roi,
        by_reason=by_reason,
    )
