"""In-process store. Used in test mode and tests."""

from __future__ import annotations
import copy
from typing import Dict, List, Optional

from hurst_trader.core.types import Position, PositionStatus, Signal, SignalStatus, SignalType
from hurst_trader.storage.base import InstanceRecord, Store


class MemoryStore(Store):
    def __init__(self):
        self.instances: Dict[str, dict] = {}
        self.signals: Dict[str, dict] = {}
        self.positions: Dict[str, dict] = {}

    async def load_instances(self) -> List[InstanceRecord]:
        return [InstanceRecord.from_dict(d) for d in self.instances.values()]

    async def load_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        data = self.instances.get(instance_id)
        return InstanceRecord.from_dict(data) if data else None

    async def save_instance(self, record: InstanceRecord) -> None:
        self.instances[record.instance_id] = record.to_dict()

    async def delete_instance(self, instance_id: str) -> None:
        self.instances.pop(instance_id, None)
        self.signals = {k: v for k, v in self.signals.items() if v["instanceId"] != instance_id}
        self.positions = {k: v for k, v in self.positions.items() if v["instanceId"] != instance_id}

    async def append_signal(self, signal: Signal) -> None:
        self.signals.setdefault(signal.id, signal.to_dict())

    async def update_signal_status(self, signal_id: str, status: SignalStatus, details: Optional[dict] = None) -> None:
        data = self.signals.get(signal_id)
        if data is None:
            return
        data["status"] = status.value
        if details:
            data["execution"] = dict(details)

    async def query_signals(
        self, instance_id: str, type: Optional[SignalType] = None, since: Optional[int] = None
    ) -> List[Signal]:
        rows = [
            d for d in self.signals.values()
            if d["instanceId"] == instance_id
            and (type is None or d["type"] == type.value)
            and (since is None or d["timestamp"] >= since)
        ]
        rows.sort(key=lambda d: d["timestamp"])
        return [Signal.from_dict(d) for d in rows]

    async def save_open_position(self, instance_id: str, position: Position) -> None:
        data = copy.deepcopy(position.to_dict())
        data["instanceId"] = instance_id
        self.positions[position.position_id] = data

    async def load_open_position(self, instance_id: str) -> Optional[Position]:
        open_states = (PositionStatus.ACTIVE.value, PositionStatus.CLOSING.value)
        for data in reversed(list(self.positions.values())):
            if data["instanceId"] == instance_id and data["status"] in open_states:
                return Position.from_dict(copy.deepcopy(data))
        return None

    async def close_position(self, position_id: str, exit_details: dict) -> None:
        data = self.positions.get(position_id)
        if data is None:
            return
        data.update(copy.deepcopy(exit_details))
        data["status"] = PositionStatus.CLOSED.value
