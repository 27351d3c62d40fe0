"""
In-Memory Storage Backend

Process-local implementations of the storage interfaces. Used for
local runs (storage.backend: memory) and by the test suite.

All state is guarded by a threading.Lock so the HTTP API (which may run
handlers in worker threads) and the monitor loops can share one
instance. Reads hand out copies, never the stored objects.
"""

import threading
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Iterable

from ..common.config import AlarmStatus, Machine
from .base import (
    AlarmRecord,
    AlarmStore,
    CleaningEntry,
    CleaningLog,
    HeartbeatRecord,
    HeartbeatRepository,
    MachineRegistry,
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryHeartbeatRepository(HeartbeatRepository):
    """Heartbeat records in a dict, with change notifications"""

    def __init__(self, records: Iterable[HeartbeatRecord] = ()):
        super().__init__()
        self._lock = threading.Lock()
        self._records: dict[str, HeartbeatRecord] = {r.machine_id: deepcopy(r) for r in records}

    async def read(self, machine_id: str) -> HeartbeatRecord | None:
        with self._lock:
            record = self._records.get(machine_id)
            return deepcopy(record) if record else None

    async def read_all(self) -> dict[str, HeartbeatRecord]:
        with self._lock:
            return deepcopy(self._records)

    async def write_status(self, machine_id: str, status: str) -> None:
        with self._lock:
            record = self._records.get(machine_id)
            if record is None:
                record = HeartbeatRecord(machine_id=machine_id)
                self._records[machine_id] = record
            record.status = status
            snapshot = deepcopy(record)
        self._notify_change(snapshot)

    async def record_heartbeat(
        self,
        machine_id: str,
        seen_at_ms: float,
        metrics: dict[str, Any] | None = None,
    ) -> HeartbeatRecord:
        with self._lock:
            record = self._records.get(machine_id)
            if record is None:
                record = HeartbeatRecord(machine_id=machine_id)
                self._records[machine_id] = record
            record.last_seen_at = seen_at_ms
            record.status = "online"
            if metrics is not None:
                record.metrics = dict(metrics)
            snapshot = deepcopy(record)
        self._notify_change(snapshot)
        return snapshot


class InMemoryMachineRegistry(MachineRegistry):
    """Machine catalog seeded from configuration"""

    def __init__(self, machines: Iterable[Machine] = ()):
        self._machines: dict[str, Machine] = {m.id: m for m in machines}

    async def list_machines(self) -> list[Machine]:
        return list(self._machines.values())

    async def get(self, machine_id: str) -> Machine | None:
        return self._machines.get(machine_id)


class InMemoryAlarmStore(AlarmStore):
    """
    Alarm rows in a dict.

    insert_if_absent() checks and inserts under one lock, so it is a
    genuine conditional insert for every caller sharing this instance.
    """

    supports_conditional_insert = True

    def __init__(self, alarms: Iterable[AlarmRecord] = ()):
        self._lock = threading.Lock()
        self._alarms: dict[str, AlarmRecord] = {a.id: deepcopy(a) for a in alarms}

    async def query(
        self,
        machine_id: str | None = None,
        kind: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[AlarmRecord]:
        with self._lock:
            matches = [
                deepcopy(a) for a in self._alarms.values()
                if (machine_id is None or a.machine_id == machine_id)
                and (kind is None or a.kind == kind)
                and (status is None or a.status == status)
                and (severity is None or a.severity == severity)
                and (created_before is None or (a.created_at is not None and a.created_at < created_before))
            ]

        matches.sort(key=lambda a: a.created_at or _EPOCH, reverse=True)
        return matches[:limit] if limit is not None else matches

    async def get(self, alarm_id: str) -> AlarmRecord | None:
        with self._lock:
            alarm = self._alarms.get(alarm_id)
            return deepcopy(alarm) if alarm else None

    async def insert(self, alarm: AlarmRecord) -> AlarmRecord:
        with self._lock:
            self._alarms[alarm.id] = deepcopy(alarm)
            return deepcopy(alarm)

    async def insert_if_absent(self, alarm: AlarmRecord) -> tuple[AlarmRecord, bool]:
        with self._lock:
            for existing in self._alarms.values():
                if (
                    existing.machine_id == alarm.machine_id
                    and existing.kind == alarm.kind
                    and existing.status == AlarmStatus.ACTIVE.value
                ):
                    return deepcopy(existing), False
            self._alarms[alarm.id] = deepcopy(alarm)
            return deepcopy(alarm), True

    async def patch(
        self,
        alarm_id: str,
        fields: dict[str, Any],
        expected_status: Iterable[str] | None = None,
    ) -> AlarmRecord | None:
        with self._lock:
            alarm = self._alarms.get(alarm_id)
            if alarm is None:
                return None
            if expected_status is not None and alarm.status not in set(expected_status):
                return None
            for key, value in fields.items():
                if not hasattr(alarm, key) or key == "id":
                    raise KeyError(f"Unknown alarm field: {key}")
                setattr(alarm, key, value)
            return deepcopy(alarm)

    async def delete(self, alarm_id: str) -> bool:
        with self._lock:
            return self._alarms.pop(alarm_id, None) is not None


class InMemoryCleaningLog(CleaningLog):
    """Cleaning entries grouped per machine"""

    def __init__(self, entries: Iterable[CleaningEntry] = ()):
        self._lock = threading.Lock()
        self._entries: dict[str, list[CleaningEntry]] = {}
        for entry in entries:
            self._entries.setdefault(entry.machine_id, []).append(entry)

    async def last_entry(self, machine_id: str) -> CleaningEntry | None:
        with self._lock:
            entries = self._entries.get(machine_id)
            if not entries:
                return None
            return max(entries, key=lambda e: e.timestamp)

    async def append(self, entry: CleaningEntry) -> CleaningEntry:
        with self._lock:
            self._entries.setdefault(entry.machine_id, []).append(entry)
        return entry
