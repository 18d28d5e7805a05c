"""Lot size, price and notional filter helpers from exchange info."""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SymbolFilters:
    min_qty: float = 0.00001
    lot_step: float = 0.00001
    price_tick: float = 0.01
    min_notional: float = 5.0
    quote_precision: int = 8
    quote_asset: str = ""


def parse_symbol_filters(symbol_info: Optional[dict]) -> SymbolFilters:
    """
    Extract LOT_SIZE, PRICE_FILTER and (MIN_)NOTIONAL values from a spot symbol.
    Uses defaults if symbol_info is None.
    """
    defaults = SymbolFilters()
    if not symbol_info:
        return defaults
    min_qty = defaults.min_qty
    lot_step = defaults.lot_step
    price_tick = defaults.price_tick
    min_notional = defaults.min_notional
    for f in symbol_info.get("filters", []):
        kind = f.get("filterType")
        if kind == "LOT_SIZE":
            min_qty = float(f.get("minQty", min_qty))
            lot_step = float(f.get("stepSize", lot_step))
        elif kind == "PRICE_FILTER":
            price_tick = float(f.get("tickSize", price_tick))
        elif kind in ("MIN_NOTIONAL", "NOTIONAL"):
            min_notional = float(f.get("minNotional", min_notional))
    precision = int(symbol_info.get("quoteAssetPrecision", symbol_info.get("quotePrecision", defaults.quote_precision)))
    return SymbolFilters(min_qty, lot_step, price_tick, min_notional, precision, symbol_info.get("quoteAsset", ""))


def round_quantity(qty: float, min_qty: float, step_size: float) -> float:
    """Round down to step size; return 0 if below min_qty."""
    if qty <= 0:
        return 0.0
    rounded = math.floor(qty / step_size) * step_size
    if rounded < min_qty:
        return 0.0
    return round(rounded, 8)


def round_quote(amount: float, precision: int) -> float:
    """Round a quote amount down to the asset precision."""
    factor = 10 ** precision
    return math.floor(amount * factor) / factor
