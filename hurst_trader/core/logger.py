"""
Structured logging setup. File + console, plus throttling for per-tick debug lines.
"""

from __future__ import annotations
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Dict, Optional


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the package logger: console and optional file.
    Never log API keys or secrets.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger("hurst_trader")
    root.setLevel(log_level)
    root.handlers.clear()

    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt, datefmt=date_fmt)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir and log_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        path = log_dir / log_file
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    return root


class ThrottledLog:
    """Emit a given key at most once per interval. Used for per-tick diagnostics."""

    def __init__(self, logger: logging.Logger, clock: Callable[[], float] = time.monotonic):
        self._logger = logger
        self._clock = clock
        self._last: Dict[str, float] = {}

    def log(self, key: str, interval_s: float, level: int, msg: str, *args) -> bool:
        if not self._logger.isEnabledFor(level):
            return False
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < interval_s:
            return False
        self._last[key] = now
        self._logger.log(level, msg, *args)
        return True

    def debug(self, key: str, interval_s: float, msg: str, *args) -> bool:
        return self.log(key, interval_s, logging.DEBUG, msg, *args)

    def forget(self, prefix: str = "") -> None:
        for key in [k for k in self._last if k.startswith(prefix)]:
            del self._last[key]
