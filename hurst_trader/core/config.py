"""
Load configuration from config.yaml and .env. API keys only from env.
Per-instance strategy settings are parsed into InstanceConfig and validated against LIMITS.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml
from dotenv import load_dotenv

from hurst_trader.core.errors import ValidationError
from hurst_trader.core.types import EntryType
from hurst_trader.utils.timeframes import timeframe_minutes

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

# (min, max) inclusive bounds checked by InstanceConfig.validate
LIMITS = {
    "hurst.periods": (10, 100),
    "hurst.upperDeviationFactor": (0.5, 5.0),
    "hurst.lowerDeviationFactor": (0.5, 5.0),
    "ema.periods": (5, 200),
    "signals.minEntryTimeGap": (5 * MINUTE_MS, 24 * HOUR_MS),
    "signals.minFirstEntryDuration": (0, 24 * HOUR_MS),
    "signals.trailingStop": (0.001, 0.2),
    "signals.trailingStopDelay": (0, 24 * HOUR_MS),
    "capitalAllocation.firstEntry": (0.01, 0.5),
    "capitalAllocation.secondEntry": (0.01, 0.7),
    "capitalAllocation.thirdEntry": (0.01, 0.9),
}


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


@dataclass
class HurstSettings:
    interval: str = "15m"
    periods: int = 25
    upper_deviation_factor: float = 2.0
    lower_deviation_factor: float = 2.0


@dataclass
class EmaSettings:
    interval: str = "1h"
    periods: int = 30
    slope_dead_band: float = 1e-4


@dataclass
class SignalSettings:
    check_ema_trend: bool = True
    min_entry_time_gap: int = 2 * HOUR_MS
    min_first_entry_duration: int = HOUR_MS
    enable_trailing_stop: bool = True
    trailing_stop: float = 0.02
    trailing_stop_delay: int = 5 * MINUTE_MS
    exit_trigger_factor: float = 1.001
    return_trigger_factor: float = 0.999
    exit_confirm_ms: int = 15 * MINUTE_MS
    return_confirm_ms: int = 15 * MINUTE_MS


@dataclass
class CapitalAllocation:
    first_entry: float = 0.10
    second_entry: float = 0.25
    third_entry: float = 0.50

    def fraction(self, entry_type: EntryType) -> float:
        return {
            EntryType.FIRST: self.first_entry,
            EntryType.SECOND: self.second_entry,
            EntryType.THIRD: self.third_entry,
        }[entry_type]

    @property
    def total(self) -> float:
        return self.first_entry + self.second_entry + self.third_entry


@dataclass
class InstanceConfig:
    """Settings for one strategy instance bound to one symbol."""
    instance_id: str
    symbol: str
    hurst: HurstSettings = field(default_factory=HurstSettings)
    ema: EmaSettings = field(default_factory=EmaSettings)
    signals: SignalSettings = field(default_factory=SignalSettings)
    capital_allocation: CapitalAllocation = field(default_factory=CapitalAllocation)
    initial_capital: float = 1000.0
    test_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "InstanceConfig":
        """Parse the camelCase layout used in config.yaml and in the store."""
        hurst = data.get("hurst") or {}
        ema = data.get("ema") or {}
        signals = data.get("signals") or {}
        alloc = data.get("capitalAllocation") or {}
        h, e, s, a = HurstSettings(), EmaSettings(), SignalSettings(), CapitalAllocation()
        symbol = str(data.get("symbol", "")).strip().upper()
        return cls(
            instance_id=str(data.get("instanceId") or data.get("id") or symbol.lower()),
            symbol=symbol,
            hurst=HurstSettings(
                interval=hurst.get("interval", h.interval),
                periods=int(hurst.get("periods", h.periods)),
                upper_deviation_factor=float(hurst.get("upperDeviationFactor", h.upper_deviation_factor)),
                lower_deviation_factor=float(hurst.get("lowerDeviationFactor", h.lower_deviation_factor)),
            ),
            ema=EmaSettings(
                interval=ema.get("interval", e.interval),
                periods=int(ema.get("periods", e.periods)),
                slope_dead_band=float(ema.get("slopeDeadBand", e.slope_dead_band)),
            ),
            signals=SignalSettings(
                check_ema_trend=bool(signals.get("checkEMATrend", s.check_ema_trend)),
                min_entry_time_gap=int(signals.get("minEntryTimeGap", s.min_entry_time_gap)),
                min_first_entry_duration=int(signals.get("minFirstEntryDuration", s.min_first_entry_duration)),
                enable_trailing_stop=bool(signals.get("enableTrailingStop", s.enable_trailing_stop)),
                trailing_stop=float(signals.get("trailingStop", s.trailing_stop)),
                trailing_stop_delay=int(signals.get("trailingStopDelay", s.trailing_stop_delay)),
                exit_trigger_factor=float(signals.get("exitTriggerFactor", s.exit_trigger_factor)),
                return_trigger_factor=float(signals.get("returnTriggerFactor", s.return_trigger_factor)),
                exit_confirm_ms=int(signals.get("exitConfirmMs", s.exit_confirm_ms)),
                return_confirm_ms=int(signals.get("returnConfirmMs", s.return_confirm_ms)),
            ),
            capital_allocation=CapitalAllocation(
                first_entry=float(alloc.get("firstEntry", a.first_entry)),
                second_entry=float(alloc.get("secondEntry", a.second_entry)),
                third_entry=float(alloc.get("thirdEntry", a.third_entry)),
            ),
            initial_capital=float(data.get("initialCapital", 1000.0)),
            test_mode=bool(data.get("testMode", False)),
        )

    def to_dict(self) -> dict:
        return {
            "instanceId": self.instance_id,
            "symbol": self.symbol,
            "hurst": {
                "interval": self.hurst.interval,
                "periods": self.hurst.periods,
                "upperDeviationFactor": self.hurst.upper_deviation_factor,
                "lowerDeviationFactor": self.hurst.lower_deviation_factor,
            },
            "ema": {
                "interval": self.ema.interval,
                "periods": self.ema.periods,
                "slopeDeadBand": self.ema.slope_dead_band,
            },
            "signals": {
                "checkEMATrend": self.signals.check_ema_trend,
                "minEntryTimeGap": self.signals.min_entry_time_gap,
                "minFirstEntryDuration": self.signals.min_first_entry_duration,
                "enableTrailingStop": self.signals.enable_trailing_stop,
                "trailingStop": self.signals.trailing_stop,
                "trailingStopDelay": self.signals.trailing_stop_delay,
                "exitTriggerFactor": self.signals.exit_trigger_factor,
                "returnTriggerFactor": self.signals.return_trigger_factor,
                "exitConfirmMs": self.signals.exit_confirm_ms,
                "returnConfirmMs": self.signals.return_confirm_ms,
            },
            "capitalAllocation": {
                "firstEntry": self.capital_allocation.first_entry,
                "secondEntry": self.capital_allocation.second_entry,
                "thirdEntry": self.capital_allocation.third_entry,
            },
            "initialCapital": self.initial_capital,
            "testMode": self.test_mode,
        }

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        if not self.symbol:
            errors.append("symbol is required")
        values = {
            "hurst.periods": self.hurst.periods,
            "hurst.upperDeviationFactor": self.hurst.upper_deviation_factor,
            "hurst.lowerDeviationFactor": self.hurst.lower_deviation_factor,
            "ema.periods": self.ema.periods,
            "signals.minEntryTimeGap": self.signals.min_entry_time_gap,
            "signals.minFirstEntryDuration": self.signals.min_first_entry_duration,
            "signals.trailingStop": self.signals.trailing_stop,
            "signals.trailingStopDelay": self.signals.trailing_stop_delay,
            "capitalAllocation.firstEntry": self.capital_allocation.first_entry,
            "capitalAllocation.secondEntry": self.capital_allocation.second_entry,
            "capitalAllocation.thirdEntry": self.capital_allocation.third_entry,
        }
        for key, value in values.items():
            lo, hi = LIMITS[key]
            if not lo <= value <= hi:
                errors.append(f"{key}={value} outside [{lo}, {hi}]")
        if self.capital_allocation.total > 1.0 + 1e-9:
            errors.append(f"capitalAllocation sums to {self.capital_allocation.total:.2f} > 1.0")
        if self.signals.exit_trigger_factor <= 1.0:
            errors.append("signals.exitTriggerFactor must be > 1")
        if not 0.0 < self.signals.return_trigger_factor < 1.0:
            errors.append("signals.returnTriggerFactor must be in (0, 1)")
        if self.signals.exit_confirm_ms <= 0 or self.signals.return_confirm_ms <= 0:
            errors.append("signals.exitConfirmMs and returnConfirmMs must be > 0")
        if self.ema.slope_dead_band < 0:
            errors.append("ema.slopeDeadBand must be >= 0")
        if self.initial_capital <= 0:
            errors.append("initialCapital must be > 0")
        for key, interval in (("hurst.interval", self.hurst.interval), ("ema.interval", self.ema.interval)):
            try:
                timeframe_minutes(interval)
            except ValueError:
                errors.append(f"{key}={interval!r} is not a supported interval")
        return errors

    def validate(self) -> "InstanceConfig":
        errors = self.validation_errors()
        if errors:
            raise ValidationError(errors)
        return self


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env. Returns Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Env overrides (for secrets and overrides)
    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    api = data.get("api", {})
    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})
    storage = data.get("storage", {})
    dispatch = data.get("dispatch", {})
    stream = data.get("stream", {})

    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Prefer dedicated testnet/mainnet keys so both can live in .env and USE_TESTNET switches
    if use_testnet:
        binance_api_key = env("BINANCE_TESTNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_TESTNET_API_SECRET") or env("BINANCE_API_SECRET")
    else:
        binance_api_key = env("BINANCE_MAINNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_MAINNET_API_SECRET") or env("BINANCE_API_SECRET")

    return Config(
        binance_api_key=binance_api_key,
        binance_api_secret=binance_api_secret,
        use_testnet=use_testnet,
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN", telegram.get("bot_token", "")),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", telegram.get("chat_id", "")),
        log_level=env("LOG_LEVEL", logging_cfg.get("level", "INFO")),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "hurst_trader.log"),
        store_path=Path(env("STORE_PATH", storage.get("path", "data/hurst_trader.sqlite3"))),
        dispatch_max_attempts=env_int("DISPATCH_MAX_ATTEMPTS", dispatch.get("max_attempts", 5)),
        dispatch_base_delay=env_float("DISPATCH_BASE_DELAY", dispatch.get("base_delay", 1.0)),
        staleness_tolerance_ms=int(stream.get("staleness_tolerance_ms", 2000)),
        instances=[InstanceConfig.from_dict(d) for d in data.get("instances", []) or []],
    )


class Config:
    """Application configuration. Immutable after load."""

    __slots__ = (
        "binance_api_key", "binance_api_secret", "use_testnet",
        "telegram_bot_token", "telegram_chat_id",
        "log_level", "log_dir", "log_file",
        "store_path", "dispatch_max_attempts", "dispatch_base_delay",
        "staleness_tolerance_ms", "instances",
    )

    def __init__(
        self,
        binance_api_key: str = "",
        binance_api_secret: str = "",
        use_testnet: bool = True,
        telegram_bot_token: str = "",
        telegram_chat_id: str = "",
        log_level: str = "INFO",
        log_dir: Path = None,
        log_file: str = "hurst_trader.log",
        store_path: Path = None,
        dispatch_max_attempts: int = 5,
        dispatch_base_delay: float = 1.0,
        staleness_tolerance_ms: int = 2000,
        instances: Optional[List[InstanceConfig]] = None,
    ):
        self.binance_api_key = binance_api_key
        self.binance_api_secret = binance_api_secret
        self.use_testnet = use_testnet
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.log_level = log_level
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_file = log_file
        self.store_path = Path(store_path) if store_path else Path("data/hurst_trader.sqlite3")
        self.dispatch_max_attempts = dispatch_max_attempts
        self.dispatch_base_delay = dispatch_base_delay
        self.staleness_tolerance_ms = staleness_tolerance_ms
        self.instances = list(instances or [])
