"""Utils: Telegram alerts, timeframes, exchange filters."""

from hurst_trader.utils.telegram import send_telegram, TelegramAlerter
from hurst_trader.utils.timeframes import timeframe_minutes, timeframe_ms, period_open

__all__ = ["send_telegram", "TelegramAlerter", "timeframe_minutes", "timeframe_ms", "period_open"]
