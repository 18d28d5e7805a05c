#!/usr/bin/env python3
"""
Hurst Trader CLI: run | validate | stats
Usage:
  python main.py run [--config config.yaml]
  python main.py validate [--config config.yaml]
  python main.py stats --instance ID [--config config.yaml]
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hurst_trader.core.config import Config, load_config
from hurst_trader.core.errors import TraderError
from hurst_trader.core.logger import setup_logging
from hurst_trader.execution.binance_spot import BinanceMarketData, BinanceSpotBroker
from hurst_trader.runtime.supervisor import Supervisor
from hurst_trader.storage.sqlite import SqliteStore
from hurst_trader.utils.telegram import TelegramAlerter, send_telegram

logger = logging.getLogger("hurst_trader")


def build_supervisor(config: Config) -> Supervisor:
    store = SqliteStore(config.store_path)
    market_data = BinanceMarketData(config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet)
    broker = None
    if config.binance_api_key and config.binance_api_secret:
        broker = BinanceSpotBroker(config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet)
    elif any(not i.test_mode for i in config.instances):
        logger.warning("No Binance API keys: only test-mode instances can start")
    return Supervisor(
        store,
        market_data,
        broker=broker,
        alerter=TelegramAlerter(config.telegram_bot_token, config.telegram_chat_id),
        staleness_tolerance_ms=config.staleness_tolerance_ms,
        dispatch_max_attempts=config.dispatch_max_attempts,
        dispatch_base_delay=config.dispatch_base_delay,
    )


async def _run(config: Config) -> int:
    supervisor = build_supervisor(config)
    for instance in config.instances:
        await supervisor.create_instance(instance)
        record = await supervisor.store.load_instance(instance.instance_id)
        record.active = True
        await supervisor.store.save_instance(record)
    started = await supervisor.restore()
    if not started:
        logger.error("No instance could be started")
        await supervisor.store.close()
        return 1
    send_telegram(
        f"Hurst trader started | {', '.join(started)} | testnet={config.use_testnet}",
        config.telegram_bot_token,
        config.telegram_chat_id,
    )
    try:
        while True:
            await asyncio.sleep(3600)
            for iid, state in supervisor.snapshot().items():
                pos = state["position"]
                logger.info("Hourly | %s | price=%s | position=%s entries=%d | available=%.2f locked=%.2f",
                            iid, state["lastPrice"], pos["status"], len(pos["entries"]),
                            state["financials"]["available"], state["financials"]["locked"])
    finally:
        await supervisor.stop_all()
        await supervisor.store.close()


def run_live(config_path: Path | None) -> int:
    """Start every configured instance plus stored active ones, until interrupted."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    if not config.instances:
        logger.error("No instances configured in config.yaml")
        return 1
    try:
        return asyncio.run(_run(config))
    except KeyboardInterrupt:
        logger.info("Shutdown by user")
        send_telegram("Hurst trader stopped (user request).", config.telegram_bot_token, config.telegram_chat_id)
        return 0
    except TraderError as e:
        logger.error("Startup failed: %s", e)
        return 1


def run_validate(config_path: Path | None) -> int:
    """Check every configured instance and print the failed rules."""
    config = load_config(config_path, ROOT)
    failed = 0
    for instance in config.instances:
        errors = instance.validation_errors()
        if errors:
            failed += 1
            print(f"{instance.instance_id} ({instance.symbol}): INVALID")
            for e in errors:
                print(f"  - {e}")
        else:
            print(f"{instance.instance_id} ({instance.symbol}): ok")
    if not config.instances:
        print("No instances configured")
        return 1
    return 1 if failed else 0


async def _stats(config: Config, instance_id: str) -> int:
    store = SqliteStore(config.store_path)
    try:
        supervisor = Supervisor(store, market_data=None)
        s = await supervisor.get_stats(instance_id)
    finally:
        await store.close()
    print(f"\n--- {instance_id} ---")
    print(f"Trades: {s.total_trades} (wins: {s.profitable_trades}, losses: {s.losing_trades})")
    print(f"Win rate: {s.win_rate_pct:.1f}%")
    print(f"Total profit: {s.total_profit:.2f} (avg {s.average_profit:.2f}, {s.average_profit_pct:.2f}%)")
    print(f"Best / worst: {s.max_profit_pct:.2f}% / {s.max_loss_pct:.2f}%")
    print(f"Profit factor: {s.profit_factor:.2f}")
    print(f"Max drawdown: {s.max_drawdown_pct:.2f}%")
    print(f"ROI: {s.roi_pct:.2f}%")
    for reason, bucket in sorted(s.by_reason.items()):
        print(f"  {reason}: {bucket['trades']} trades, {bucket['profit']:.2f}")
    return 0


def run_stats(config_path: Path | None, instance_id: str) -> int:
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    try:
        return asyncio.run(_stats(config, instance_id))
    except TraderError as e:
        logger.error("%s", e)
        return 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Hurst channel mean-reversion trader")
    parser.add_argument("mode", choices=["run", "validate", "stats"], help="Run instances, validate config, or show stats")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--instance", default=None, help="Instance id (stats)")
    args = parser.parse_args()
    if args.mode == "validate":
        return run_validate(args.config)
    if args.mode == "stats":
        if not args.instance:
            parser.error("stats needs --instance")
        return run_stats(args.config, args.instance)
    return run_live(args.config)


if __name__ == "__main__":
    exit(main())
