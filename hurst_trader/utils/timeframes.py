"""Timeframe string conversions and period alignment."""


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '15m', '1h', '1d') to minutes."""
    tf = tf.strip().lower()
    if tf.endswith("m"):
        return int(tf[:-1])
    if tf.endswith("h"):
        return int(tf[:-1]) * 60
    if tf.endswith("d"):
        return int(tf[:-1]) * 60 * 24
    raise ValueError(f"Unsupported timeframe: {tf}")


def timeframe_ms(tf: str) -> int:
    """Period length in epoch milliseconds."""
    return timeframe_minutes(tf) * 60 * 1000


def period_open(timestamp_ms: int, period_ms: int) -> int:
    """Open time of the period containing timestamp_ms."""
    return timestamp_ms - (timestamp_ms % period_ms)
