"""
Supervisor: owns the set of instances. Create, start, stop, delete, restore on boot,
and read-only snapshots for observers.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Dict, List, Optional

from hurst_trader.analytics.metrics import SignalStats, signal_stats
from hurst_trader.core.config import InstanceConfig
from hurst_trader.core.errors import PreconditionError, TraderError
from hurst_trader.core.types import SignalStatus, SignalType
from hurst_trader.execution.base import Broker, MarketData
from hurst_trader.runtime.orchestrator import InstanceOrchestrator
from hurst_trader.storage.base import InstanceRecord, Store
from hurst_trader.utils.telegram import TelegramAlerter

logger = logging.getLogger("hurst_trader.runtime.supervisor")


class Supervisor:
    def __init__(
        self,
        store: Store,
        market_data: MarketData,
        broker: Optional[Broker] = None,
        alerter: Optional[TelegramAlerter] = None,
        staleness_tolerance_ms: int = 2000,
        dispatch_max_attempts: int = 5,
        dispatch_base_delay: float = 1.0,
    ):
        self.store = store
        self.market_data = market_data
        self.broker = broker
        self.alerter = alerter
        self.staleness_tolerance_ms = staleness_tolerance_ms
        self.dispatch_max_attempts = dispatch_max_attempts
        self.dispatch_base_delay = dispatch_base_delay
        self._instances: Dict[str, InstanceOrchestrator] = {}

    @property
    def running(self) -> List[str]:
        return [iid for iid, orch in self._instances.items() if orch.running]

    def get(self, instance_id: str) -> InstanceOrchestrator:
        orch = self._instances.get(instance_id)
        if orch is None:
            raise PreconditionError(f"instance {instance_id} is not loaded")
        return orch

    async def create_instance(self, config: InstanceConfig) -> InstanceRecord:
        """Validate and store a new instance, or update the config of an existing one."""
        config.validate()
        if config.instance_id in self._instances and self._instances[config.instance_id].running:
            raise PreconditionError(f"instance {config.instance_id} is running, stop it before changing it")
        record = await self.store.load_instance(config.instance_id)
        if record is None:
            record = InstanceRecord(config=config)
            logger.info("Created instance %s on %s", config.instance_id, config.symbol)
        else:
            record.config = config
            logger.info("Updated instance %s", config.instance_id)
        await self.store.save_instance(record)
        return record

    async def start_instance(self, instance_id: str) -> bool:
        """Start one instance. Returns False (and records last_error) when it cannot start."""
        if instance_id in self._instances and self._instances[instance_id].running:
            return True
        record = await self.store.load_instance(instance_id)
        if record is None:
            raise PreconditionError(f"unknown instance {instance_id}")
        orch = InstanceOrchestrator(
            record.config,
            market_data=self.market_data,
            store=self.store,
            broker=self.broker,
            alerter=self.alerter,
            staleness_tolerance_ms=self.staleness_tolerance_ms,
            dispatch_max_attempts=self.dispatch_max_attempts,
            dispatch_base_delay=self.dispatch_base_delay,
        )
        self._instances[instance_id] = orch
        try:
            await orch.start()
        except TraderError as e:
            record = await self.store.load_instance(instance_id) or record
            record.active = False
            record.last_error = str(e)
            await self.store.save_instance(record)
            if self.alerter:
                await self.alerter.alert(f"[{instance_id}] failed to start: {e}")
            return False
        record = await self.store.load_instance(instance_id) or record
        record.active = True
        record.last_error = None
        await self.store.save_instance(record)
        return True

    async def stop_instance(self, instance_id: str, deactivate: bool = True) -> None:
        orch = self._instances.get(instance_id)
        if orch is not None:
            await orch.stop()
        if deactivate:
            record = await self.store.load_instance(instance_id)
            if record is not None:
                record.active = False
                if orch is not None:
                    record.last_error = orch.last_error
                await self.store.save_instance(record)

    async def delete_instance(self, instance_id: str) -> None:
        orch = self._instances.get(instance_id)
        if orch is not None and orch.positions.position.entries:
            raise PreconditionError(f"instance {instance_id} holds an open position, close it first")
        await self.stop_instance(instance_id, deactivate=False)
        self._instances.pop(instance_id, None)
        await self.store.delete_instance(instance_id)
        logger.info("Deleted instance %s", instance_id)

    async def restore(self) -> List[str]:
        """Start every instance stored as active. Returns ids that started."""
        records = await self.store.load_instances()
        active = [r.instance_id for r in records if r.active]
        if not active:
            return []
        logger.info("Restoring %d active instance(s): %s", len(active), ", ".join(active))
        results = await asyncio.gather(*(self.start_instance(iid) for iid in active))
        return [iid for iid, ok in zip(active, results) if ok]

    async def stop_all(self) -> None:
        """Shut down every running instance; they stay active and restart on next boot."""
        await asyncio.gather(*(self.stop_instance(iid, deactivate=False) for iid in self.running))

    def request_manual_exit(self, instance_id: str) -> None:
        self.get(instance_id).request_manual_exit()

    def snapshot(self, instance_id: Optional[str] = None):
        if instance_id is not None:
            return self.get(instance_id).get_state()
        return {iid: orch.get_state() for iid, orch in self._instances.items()}

    async def get_stats(self, instance_id: str) -> SignalStats:
        record = await self.store.load_instance(instance_id)
        if record is None:
            raise PreconditionError(f"unknown instance {instance_id}")
        exits = await self.store.query_signals(instance_id, type=SignalType.EXIT)
        executed = [s for s in exits if s.status == SignalStatus.EXECUTED]
        return signal_stats(executed, initial_capital=record.config.initial_capital)
