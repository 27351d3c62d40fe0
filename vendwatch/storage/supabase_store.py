"""
Supabase Storage Backend

Implements the storage interfaces on top of Supabase (PostgreSQL):
- heartbeats (machine_id, last_seen_at, status, metrics)
- machines (id, type, name, serial_number, location, notifications)
- alarms
- cleaning_logs

The Python client is synchronous, so each call runs in a worker thread.
Any PostgREST or network failure is re-raised as TransientIOError.

Alarm dedup relies on the partial unique index alarms_one_active_per_kind
(see database/schema.sql): an insert that would create a second active
alarm for the same (machine_id, kind) fails with a unique violation and
the existing row is returned instead.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from ..common.config import AlarmStatus, Machine, Settings, get_settings, load_machine
from ..common.exceptions import TransientIOError
from ..common.logging_setup import get_service_logger
from ..common.timestamp import parse_iso, utc_now
from .base import (
    AlarmRecord,
    AlarmStore,
    CleaningEntry,
    CleaningLog,
    HeartbeatRecord,
    HeartbeatRepository,
    MachineRegistry,
)

logger = get_service_logger("storage.supabase")

UNIQUE_VIOLATION = "23505"

T = TypeVar("T")


class SupabaseService:
    """
    Supabase client wrapper.

    The client is created lazily from Settings on first use.
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings
        self._client: Client | None = None

    @property
    def client(self) -> Client:
        """Get or create Supabase client."""
        if self._client is None:
            settings = self._settings or get_settings()
            if not settings.supabase_url or not settings.supabase_service_key:
                raise ValueError(
                    "Supabase credentials not configured. "
                    "Set SUPABASE_URL and SUPABASE_SERVICE_KEY in .env file."
                )
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_service_key,
            )
        return self._client

    def is_connected(self) -> bool:
        """Check if Supabase connection is working."""
        try:
            self.client.table("machines").select("id").limit(1).execute()
            return True
        except (APIError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Supabase connectivity check failed: {e}")
            return False


async def _run(operation: str, fn: Callable[[], T]) -> T:
    """Run a blocking client call off the event loop, normalising errors."""
    try:
        return await asyncio.to_thread(fn)
    except APIError as e:
        raise TransientIOError(str(e.message or e), operation) from e
    except httpx.HTTPError as e:
        raise TransientIOError(str(e), operation) from e


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


class SupabaseHeartbeatRepository(HeartbeatRepository):
    """
    Heartbeat rows in the heartbeats table.

    Only writes made through this instance reach the change feed; writes by
    other processes show up on the next LiveStatusPublisher.refresh().
    """

    table = "heartbeats"

    def __init__(self, service: SupabaseService):
        super().__init__()
        self._service = service

    @staticmethod
    def _to_record(row: dict) -> HeartbeatRecord:
        return HeartbeatRecord(
            machine_id=row["machine_id"],
            last_seen_at=row.get("last_seen_at"),
            status=row.get("status") or "unknown",
            metrics=row.get("metrics") or {},
        )

    async def read(self, machine_id: str) -> HeartbeatRecord | None:
        result = await _run(
            "heartbeats.read",
            lambda: self._service.client.table(self.table).select("*")
            .eq("machine_id", machine_id).limit(1).execute(),
        )
        return self._to_record(result.data[0]) if result.data else None

    async def read_all(self) -> dict[str, HeartbeatRecord]:
        result = await _run(
            "heartbeats.read_all",
            lambda: self._service.client.table(self.table).select("*").execute(),
        )
        return {row["machine_id"]: self._to_record(row) for row in result.data or []}

    async def write_status(self, machine_id: str, status: str) -> None:
        # Upsert touches only the columns given, so last_seen_at is preserved
        result = await _run(
            "heartbeats.write_status",
            lambda: self._service.client.table(self.table).upsert(
                {"machine_id": machine_id, "status": status},
                on_conflict="machine_id",
            ).execute(),
        )
        if result.data:
            self._notify_change(self._to_record(result.data[0]))

    async def record_heartbeat(
        self,
        machine_id: str,
        seen_at_ms: float,
        metrics: dict[str, Any] | None = None,
    ) -> HeartbeatRecord:
        row: dict[str, Any] = {
            "machine_id": machine_id,
            "last_seen_at": int(seen_at_ms),
            "status": "online",
            "updated_at": utc_now().isoformat(),
        }
        if metrics is not None:
            row["metrics"] = metrics

        result = await _run(
            "heartbeats.record",
            lambda: self._service.client.table(self.table).upsert(
                row, on_conflict="machine_id"
            ).execute(),
        )
        record = self._to_record(result.data[0]) if result.data else HeartbeatRecord(
            machine_id=machine_id, last_seen_at=seen_at_ms, status="online", metrics=metrics or {}
        )
        self._notify_change(record)
        return record


class SupabaseMachineRegistry(MachineRegistry):
    """Machines table (read-only from the monitor's point of view)"""

    table = "machines"

    def __init__(self, service: SupabaseService):
        self._service = service

    async def list_machines(self) -> list[Machine]:
        result = await _run(
            "machines.list",
            lambda: self._service.client.table(self.table).select("*").execute(),
        )
        machines = []
        for row in result.data or []:
            try:
                machines.append(load_machine(row))
            except (KeyError, ValueError) as e:
                # Same filtering as the registry UI: rows without id/type are skipped
                logger.warning(f"Skipping invalid machine row {row.get('id')}: {e}")
        return machines

    async def get(self, machine_id: str) -> Machine | None:
        result = await _run(
            "machines.get",
            lambda: self._service.client.table(self.table).select("*")
            .eq("id", machine_id).limit(1).execute(),
        )
        return load_machine(result.data[0]) if result.data else None


class SupabaseAlarmStore(AlarmStore):
    """Alarms table with index-backed conditional insert"""

    table = "alarms"
    supports_conditional_insert = True

    def __init__(self, service: SupabaseService):
        self._service = service

    async def query(
        self,
        machine_id: str | None = None,
        kind: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[AlarmRecord]:
        def build():
            q = self._service.client.table(self.table).select("*")
            if machine_id is not None:
                q = q.eq("machine_id", machine_id)
            if kind is not None:
                q = q.eq("kind", kind)
            if status is not None:
                q = q.eq("status", status)
            if severity is not None:
                q = q.eq("severity", severity)
            if created_before is not None:
                q = q.lt("created_at", created_before.isoformat())
            q = q.order("created_at", desc=True)
            if limit is not None:
                q = q.limit(limit)
            return q.execute()

        result = await _run("alarms.query", build)
        return [AlarmRecord.from_row(row) for row in result.data or []]

    async def get(self, alarm_id: str) -> AlarmRecord | None:
        result = await _run(
            "alarms.get",
            lambda: self._service.client.table(self.table).select("*")
            .eq("id", alarm_id).limit(1).execute(),
        )
        return AlarmRecord.from_row(result.data[0]) if result.data else None

    async def insert(self, alarm: AlarmRecord) -> AlarmRecord:
        result = await _run(
            "alarms.insert",
            lambda: self._service.client.table(self.table).insert(alarm.to_row()).execute(),
        )
        if not result.data:
            raise TransientIOError(f"insert returned no row for alarm {alarm.id}", "alarms.insert")
        return AlarmRecord.from_row(result.data[0])

    async def insert_if_absent(self, alarm: AlarmRecord) -> tuple[AlarmRecord, bool]:
        try:
            result = await asyncio.to_thread(
                lambda: self._service.client.table(self.table).insert(alarm.to_row()).execute()
            )
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise TransientIOError(str(e.message or e), "alarms.insert_if_absent") from e
            existing = await self.query(
                machine_id=alarm.machine_id,
                kind=alarm.kind,
                status=AlarmStatus.ACTIVE.value,
                limit=1,
            )
            if not existing:
                # Resolved between our insert and the lookup
                raise TransientIOError(
                    f"active alarm for {alarm.machine_id}/{alarm.kind} vanished during insert",
                    "alarms.insert_if_absent",
                ) from e
            return existing[0], False
        except httpx.HTTPError as e:
            raise TransientIOError(str(e), "alarms.insert_if_absent") from e

        return AlarmRecord.from_row(result.data[0]), True

    async def patch(
        self,
        alarm_id: str,
        fields: dict[str, Any],
        expected_status: Iterable[str] | None = None,
    ) -> AlarmRecord | None:
        def update():
            query = self._service.client.table(self.table).update(_serialize(fields)).eq("id", alarm_id)
            if expected_status is not None:
                query = query.in_("status", list(expected_status))
            return query.execute()

        result = await _run("alarms.patch", update)
        return AlarmRecord.from_row(result.data[0]) if result.data else None

    async def delete(self, alarm_id: str) -> bool:
        result = await _run(
            "alarms.delete",
            lambda: self._service.client.table(self.table).delete().eq("id", alarm_id).execute(),
        )
        return bool(result.data)


class SupabaseCleaningLog(CleaningLog):
    """cleaning_logs table"""

    table = "cleaning_logs"

    def __init__(self, service: SupabaseService):
        self._service = service

    async def last_entry(self, machine_id: str) -> CleaningEntry | None:
        result = await _run(
            "cleaning_logs.last_entry",
            lambda: self._service.client.table(self.table).select("*")
            .eq("machine_id", machine_id).order("timestamp", desc=True).limit(1).execute(),
        )
        if not result.data:
            return None
        row = result.data[0]
        timestamp = parse_iso(row.get("timestamp"))
        if timestamp is None:
            return None
        return CleaningEntry(
            id=str(row["id"]),
            machine_id=row["machine_id"],
            machine_type=row.get("machine_type", ""),
            timestamp=timestamp,
        )

    async def append(self, entry: CleaningEntry) -> CleaningEntry:
        await _run(
            "cleaning_logs.append",
            lambda: self._service.client.table(self.table).insert({
                "id": entry.id,
                "machine_id": entry.machine_id,
                "machine_type": entry.machine_type,
                "timestamp": entry.timestamp.isoformat(),
            }).execute(),
        )
        return entry
