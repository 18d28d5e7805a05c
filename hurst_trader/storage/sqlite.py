"""
SQLite store. Rows keep the queried columns plus a JSON document of the full record.
Blocking calls run in a worker thread under one lock.
"""

from __future__ import annotations
import asyncio
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

from hurst_trader.core.errors import FatalError, TransientIOError
from hurst_trader.core.types import Position, PositionStatus, Signal, SignalStatus, SignalType
from hurst_trader.storage.base import InstanceRecord, Store

logger = logging.getLogger("hurst_trader.storage.sqlite")

T = TypeVar("T")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS instances (
        instance_id TEXT PRIMARY KEY,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS signals (
        id TEXT PRIMARY KEY,
        instance_id TEXT NOT NULL,
        type TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        status TEXT NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_signals_instance ON signals (instance_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS positions (
        position_id TEXT PRIMARY KEY,
        instance_id TEXT NOT NULL,
        status TEXT NOT NULL,
        updated_seq INTEGER NOT NULL,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_positions_instance ON positions (instance_id, status)",
)


class SqliteStore(Store):
    def __init__(self, path: Path | str):
        self.path = Path(path)
        if str(self.path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._seq = 0
        try:
            self._db = sqlite3.connect(str(self.path), check_same_thread=False)
            self._db.row_factory = sqlite3.Row
            self._db.execute("PRAGMA journal_mode=WAL")
            for stmt in _SCHEMA:
                self._db.execute(stmt)
            row = self._db.execute("SELECT COALESCE(MAX(updated_seq), 0) FROM positions").fetchone()
            self._seq = int(row[0])
            self._db.commit()
        except sqlite3.Error as e:
            raise FatalError(f"cannot open store {self.path}: {e}") from e
        logger.info("SQLite store at %s", self.path)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                result = fn(*args)
                self._db.commit()
                return result
            except sqlite3.OperationalError as e:
                self._db.rollback()
                raise TransientIOError(f"sqlite: {e}") from e
            except sqlite3.DatabaseError as e:
                self._db.rollback()
                raise FatalError(f"sqlite: {e}") from e

    async def close(self) -> None:
        with self._lock:
            self._db.close()

    async def load_instances(self) -> List[InstanceRecord]:
        def q():
            rows = self._db.execute("SELECT data FROM instances ORDER BY instance_id").fetchall()
            return [InstanceRecord.from_dict(json.loads(r["data"])) for r in rows]
        return await self._run(q)

    async def load_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        def q():
            row = self._db.execute("SELECT data FROM instances WHERE instance_id = ?", (instance_id,)).fetchone()
            return InstanceRecord.from_dict(json.loads(row["data"])) if row else None
        return await self._run(q)

    async def save_instance(self, record: InstanceRecord) -> None:
        def q():
            self._db.execute(
                "INSERT INTO instances (instance_id, data) VALUES (?, ?) "
                "ON CONFLICT(instance_id) DO UPDATE SET data = excluded.data",
                (record.instance_id, json.dumps(record.to_dict())),
            )
        await self._run(q)

    async def delete_instance(self, instance_id: str) -> None:
        def q():
            for table in ("instances", "signals", "positions"):
                self._db.execute(f"DELETE FROM {table} WHERE instance_id = ?", (instance_id,))
        await self._run(q)

    async def append_signal(self, signal: Signal) -> None:
        def q():
            self._db.execute(
                "INSERT OR IGNORE INTO signals (id, instance_id, type, timestamp, status, data) VALUES (?, ?, ?, ?, ?, ?)",
                (signal.id, signal.instance_id, signal.type.value, signal.timestamp, signal.status.value,
                 json.dumps(signal.to_dict())),
            )
        await self._run(q)

    async def update_signal_status(self, signal_id: str, status: SignalStatus, details: Optional[dict] = None) -> None:
        def q():
            row = self._db.execute("SELECT data FROM signals WHERE id = ?", (signal_id,)).fetchone()
            if row is None:
                logger.warning("Status update for unknown signal %s", signal_id)
                return
            data = json.loads(row["data"])
            data["status"] = status.value
            if details:
                data["execution"] = details
            self._db.execute(
                "UPDATE signals SET status = ?, data = ? WHERE id = ?",
                (status.value, json.dumps(data), signal_id),
            )
        await self._run(q)

    async def query_signals(
        self, instance_id: str, type: Optional[SignalType] = None, since: Optional[int] = None
    ) -> List[Signal]:
        sql = "SELECT data FROM signals WHERE instance_id = ?"
        params: list = [instance_id]
        if type is not None:
            sql += " AND type = ?"
            params.append(type.value)
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(since)
        sql += " ORDER BY timestamp, rowid"

        def q():
            return [Signal.from_dict(json.loads(r["data"])) for r in self._db.execute(sql, params).fetchall()]
        return await self._run(q)

    async def save_open_position(self, instance_id: str, position: Position) -> None:
        def q():
            self._seq += 1
            self._db.execute(
                "INSERT INTO positions (position_id, instance_id, status, updated_seq, data) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(position_id) DO UPDATE SET status = excluded.status, "
                "updated_seq = excluded.updated_seq, data = excluded.data",
                (position.position_id, instance_id, position.status.value, self._seq, json.dumps(position.to_dict())),
            )
        await self._run(q)

    async def load_open_position(self, instance_id: str) -> Optional[Position]:
        def q():
            row = self._db.execute(
                "SELECT data FROM positions WHERE instance_id = ? AND status IN (?, ?) "
                "ORDER BY updated_seq DESC LIMIT 1",
                (instance_id, PositionStatus.ACTIVE.value, PositionStatus.CLOSING.value),
            ).fetchone()
            return Position.from_dict(json.loads(row["data"])) if row else None
        return await self._run(q)

    async def close_position(self, position_id: str, exit_details: dict) -> None:
        def q():
            row = self._db.execute("SELECT data FROM positions WHERE position_id = ?", (position_id,)).fetchone()
            if row is None:
                logger.warning("Close for unknown position %s", position_id)
                return
            data = json.loads(row["data"])
            data.update(exit_details)
            data["status"] = PositionStatus.CLOSED.value
            self._seq += 1
            self._db.execute(
                "UPDATE positions SET status = ?, updated_seq = ?, data = ? WHERE position_id = ?",
                (PositionStatus.CLOSED.value, self._seq, json.dumps(data), position_id),
            )
        await self._run(q)
