"""
Storage Interfaces

Records and abstract collaborators the monitor core talks to:
- HeartbeatRepository - last-seen timestamp and derived status per machine
- MachineRegistry - read-only machine catalog
- AlarmStore - alarm rows
- CleaningLog - cleaning history

Backends raise TransientIOError for any read/write failure.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from ..common.config import AlarmStatus, Machine
from ..common.logging_setup import get_service_logger
from ..common.timestamp import parse_iso

logger = get_service_logger("storage")


# ============================================
# RECORDS
# ============================================

@dataclass
class HeartbeatRecord:
    """
    Latest heartbeat state for one machine.

    last_seen_at is epoch milliseconds as written by ingestion. Anything
    that is not a finite number means the machine was never seen.
    """
    machine_id: str
    last_seen_at: Any = None
    status: str = "unknown"
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class AlarmRecord:
    """An alarm row"""
    id: str
    machine_id: str
    kind: str
    severity: str
    message: str
    status: str = AlarmStatus.ACTIVE.value
    created_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        """Serialize for a JSON/REST backend"""
        row = asdict(self)
        for key in ("created_at", "acknowledged_at", "resolved_at"):
            if row[key] is not None:
                row[key] = row[key].isoformat()
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AlarmRecord":
        return cls(
            id=str(row["id"]),
            machine_id=row["machine_id"],
            kind=row["kind"],
            severity=row["severity"],
            message=row.get("message", ""),
            status=row.get("status", AlarmStatus.ACTIVE.value),
            created_at=parse_iso(row.get("created_at")),
            acknowledged_at=parse_iso(row.get("acknowledged_at")),
            acknowledged_by=row.get("acknowledged_by"),
            resolved_at=parse_iso(row.get("resolved_at")),
            metadata=row.get("metadata") or {},
        )


@dataclass
class CleaningEntry:
    """One cleaning-mode activation"""
    id: str
    machine_id: str
    machine_type: str
    timestamp: datetime


HeartbeatListener = Callable[[HeartbeatRecord], None]


# ============================================
# COLLABORATORS
# ============================================

class HeartbeatRepository(ABC):
    """
    Heartbeat state per machine, with a change feed.

    Two writers share a record: ingestion owns last_seen_at and metrics,
    the offline detector owns status. Every write made through the
    repository is pushed synchronously to the registered listeners.
    """

    def __init__(self):
        self._listeners: list[HeartbeatListener] = []

    @abstractmethod
    async def read(self, machine_id: str) -> HeartbeatRecord | None:
        """Return the record, or None if the machine never reported."""

    @abstractmethod
    async def read_all(self) -> dict[str, HeartbeatRecord]:
        """Return every record keyed by machine id."""

    @abstractmethod
    async def write_status(self, machine_id: str, status: str) -> None:
        """Write the derived status field only."""

    @abstractmethod
    async def record_heartbeat(
        self,
        machine_id: str,
        seen_at_ms: float,
        metrics: dict[str, Any] | None = None,
    ) -> HeartbeatRecord:
        """Ingest a heartbeat: set last_seen_at, status=online, metrics."""

    def add_listener(self, listener: HeartbeatListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: HeartbeatListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_change(self, record: HeartbeatRecord) -> None:
        for listener in list(self._listeners):
            if listener not in self._listeners:
                continue
            try:
                listener(record)
            except Exception:
                logger.exception(
                    f"Heartbeat listener failed for {record.machine_id}",
                    extra={"machine_id": record.machine_id},
                )


class MachineRegistry(ABC):
    """Read-only catalog of machines"""

    @abstractmethod
    async def list_machines(self) -> list[Machine]:
        """All registered machines."""

    @abstractmethod
    async def get(self, machine_id: str) -> Machine | None:
        """One machine, or None."""


class AlarmStore(ABC):
    """
    Alarm persistence.

    Stores that can atomically insert an active alarm only when no active
    alarm exists for the same (machine_id, kind) set
    supports_conditional_insert and implement insert_if_absent().
    """

    supports_conditional_insert: bool = False

    @abstractmethod
    async def query(
        self,
        machine_id: str | None = None,
        kind: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[AlarmRecord]:
        """Matching alarms, newest first."""

    @abstractmethod
    async def get(self, alarm_id: str) -> AlarmRecord | None:
        """One alarm, or None."""

    @abstractmethod
    async def insert(self, alarm: AlarmRecord) -> AlarmRecord:
        """Insert unconditionally."""

    @abstractmethod
    async def patch(
        self,
        alarm_id: str,
        fields: dict[str, Any],
        expected_status: Iterable[str] | None = None,
    ) -> AlarmRecord | None:
        """
        Update fields in one conditional write.

        When expected_status is given the row is only updated if its current
        status is one of those values.

        Returns:
            The updated alarm, or None if no row matched (gone or guard failed)
        """

    @abstractmethod
    async def delete(self, alarm_id: str) -> bool:
        """Delete; returns False if the alarm did not exist."""

    async def insert_if_absent(self, alarm: AlarmRecord) -> tuple[AlarmRecord, bool]:
        """
        Insert unless an active alarm with the same (machine_id, kind) exists.

        Returns:
            (stored alarm, created) - the existing alarm and False on a hit
        """
        raise NotImplementedError(f"{type(self).__name__} has no conditional insert")


class CleaningLog(ABC):
    """Cleaning history per machine"""

    @abstractmethod
    async def last_entry(self, machine_id: str) -> CleaningEntry | None:
        """Most recent entry, or None if the machine was never cleaned."""

    @abstractmethod
    async def append(self, entry: CleaningEntry) -> CleaningEntry:
        """Record a cleaning."""
