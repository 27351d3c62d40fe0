"""
Alarm Engine

Creates, deduplicates and manages alarms.

Dedup rule: at most one active alarm per (machine_id, kind). A second
create_alarm() for the same pair returns the existing alarm id without
touching it. Acknowledged and resolved alarms do not block a new one.

Lifecycle:
    active -> acknowledged -> resolved
    active -> resolved
Anything else raises InvalidStateError and leaves the alarm untouched.
"""

import asyncio
import uuid
import weakref
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Protocol

from ..common.config import AlarmKind, AlarmStatus, Severity
from ..common.exceptions import InvalidStateError, NotFoundError
from ..common.logging_setup import get_service_logger, log_alarm
from ..common.timestamp import Clock, utc_now
from ..storage.base import AlarmRecord, AlarmStore

logger = get_service_logger("alarms")


class AlarmListener(Protocol):
    """Anything notified once per newly inserted alarm"""

    async def alarm_created(self, alarm: AlarmRecord) -> None: ...


@dataclass
class PurgeResult:
    """Outcome of a bulk delete (per-row best effort)"""
    deleted: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AlarmStatistics:
    """Alarm counts by status, severity and kind"""
    total: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_kind: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class AlarmEngine:
    """
    Idempotent alarm creation plus lifecycle operations.

    When the store offers an atomic insert-if-absent it is used directly.
    Otherwise check-then-insert for each (machine_id, kind) is serialised
    through an asyncio.Lock, which makes creation exactly-once for every
    caller inside this process.
    """

    def __init__(
        self,
        store: AlarmStore,
        notifier: AlarmListener | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self._clock = clock
        # Entries disappear once no caller holds or waits on the lock
        self._key_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_alarm(
        self,
        machine_id: str,
        kind: AlarmKind | str,
        message: str,
        severity: Severity | str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Create an alarm unless an active one exists for (machine_id, kind).

        Returns:
            Id of the new alarm, or of the existing active alarm
        """
        alarm_id, _ = await self.open_alarm(machine_id, kind, message, severity, metadata)
        return alarm_id

    async def open_alarm(
        self,
        machine_id: str,
        kind: AlarmKind | str,
        message: str,
        severity: Severity | str,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[str, bool]:
        """Same as create_alarm(), also reporting whether a row was inserted."""
        kind = AlarmKind(kind)
        severity = Severity(severity)

        candidate = AlarmRecord(
            id=str(uuid.uuid4()),
            machine_id=machine_id,
            kind=kind.value,
            severity=severity.value,
            message=message,
            status=AlarmStatus.ACTIVE.value,
            created_at=self._clock(),
            metadata=dict(metadata or {}),
        )

        if self.store.supports_conditional_insert:
            stored, created = await self.store.insert_if_absent(candidate)
        else:
            async with self._lock_for(machine_id, kind.value):
                stored, created = await self._check_then_insert(candidate)

        if not created:
            logger.debug(
                f"Active {kind.value} alarm already open for {machine_id}",
                extra={"machine_id": machine_id, "alarm_id": stored.id, "kind": kind.value},
            )
            return stored.id, False

        log_alarm(logger, stored.id, stored.kind, stored.severity, stored.message, machine_id)
        await self._notify(stored)
        return stored.id, True

    def _lock_for(self, machine_id: str, kind: str) -> asyncio.Lock:
        key = (machine_id, kind)
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def _check_then_insert(self, candidate: AlarmRecord) -> tuple[AlarmRecord, bool]:
        existing = await self.store.query(
            machine_id=candidate.machine_id,
            kind=candidate.kind,
            status=AlarmStatus.ACTIVE.value,
            limit=1,
        )
        if existing:
            return existing[0], False
        return await self.store.insert(candidate), True

    async def _notify(self, alarm: AlarmRecord) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.alarm_created(alarm)
        except Exception:
            logger.exception(
                f"Notification failed for alarm {alarm.id}",
                extra={"alarm_id": alarm.id, "machine_id": alarm.machine_id},
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def get(self, alarm_id: str) -> AlarmRecord:
        alarm = await self.store.get(alarm_id)
        if alarm is None:
            raise NotFoundError("alarm", alarm_id)
        return alarm

    async def acknowledge(self, alarm_id: str, by_user: str) -> AlarmRecord:
        """Move an active alarm to acknowledged."""
        updated = await self._transition(
            alarm_id,
            "acknowledge",
            from_status=(AlarmStatus.ACTIVE.value,),
            fields={
                "status": AlarmStatus.ACKNOWLEDGED.value,
                "acknowledged_by": by_user,
                "acknowledged_at": self._clock(),
            },
        )
        logger.info(
            f"Alarm {alarm_id} acknowledged by {by_user}",
            extra={"alarm_id": alarm_id, "machine_id": updated.machine_id, "user": by_user},
        )
        return updated

    async def resolve(self, alarm_id: str) -> AlarmRecord:
        """Move an active or acknowledged alarm to resolved."""
        updated = await self._transition(
            alarm_id,
            "resolve",
            from_status=(AlarmStatus.ACTIVE.value, AlarmStatus.ACKNOWLEDGED.value),
            fields={
                "status": AlarmStatus.RESOLVED.value,
                "resolved_at": self._clock(),
            },
        )
        logger.info(
            f"Alarm {alarm_id} resolved",
            extra={"alarm_id": alarm_id, "machine_id": updated.machine_id},
        )
        return updated

    async def _transition(
        self,
        alarm_id: str,
        action: str,
        from_status: tuple[str, ...],
        fields: dict[str, Any],
    ) -> AlarmRecord:
        """Patch the alarm only if it is still in one of from_status."""
        alarm = await self.get(alarm_id)
        if alarm.status not in from_status:
            raise InvalidStateError(alarm_id, alarm.status, action)

        updated = await self.store.patch(alarm_id, fields, expected_status=from_status)
        if updated is not None:
            return updated

        # Lost a race: the row moved or vanished between the read and the write
        current = await self.store.get(alarm_id)
        if current is None:
            raise NotFoundError("alarm", alarm_id)
        raise InvalidStateError(alarm_id, current.status, action)

    async def delete(self, alarm_id: str) -> None:
        """Delete an alarm in any state."""
        if not await self.store.delete(alarm_id):
            raise NotFoundError("alarm", alarm_id)
        logger.info(f"Alarm {alarm_id} deleted", extra={"alarm_id": alarm_id})

    # ------------------------------------------------------------------
    # Bulk deletes
    # ------------------------------------------------------------------

    async def delete_many(self, alarm_ids: Iterable[str]) -> PurgeResult:
        """Delete each id; a failing row is counted, not raised."""
        result = PurgeResult()
        for alarm_id in alarm_ids:
            try:
                if await self.store.delete(alarm_id):
                    result.deleted += 1
                else:
                    result.failed += 1
            except Exception:
                logger.exception(f"Failed to delete alarm {alarm_id}", extra={"alarm_id": alarm_id})
                result.failed += 1
        return result

    async def purge_resolved(self) -> PurgeResult:
        """Delete every resolved alarm."""
        resolved = await self.store.query(status=AlarmStatus.RESOLVED.value)
        result = await self.delete_many(a.id for a in resolved)
        logger.info(
            f"Purged resolved alarms: deleted={result.deleted} failed={result.failed}",
            extra=result.to_dict(),
        )
        return result

    async def purge_older_than(self, days: int) -> PurgeResult:
        """Delete alarms in any state created strictly before now - days."""
        cutoff = self._clock() - timedelta(days=days)
        old = await self.store.query(created_before=cutoff)
        result = await self.delete_many(a.id for a in old)
        logger.info(
            f"Purged alarms older than {days}d: deleted={result.deleted} failed={result.failed}",
            extra={"days": days, **result.to_dict()},
        )
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_alarms(
        self,
        machine_id: str | None = None,
        status: str | None = None,
        kind: str | None = None,
        severity: str | None = None,
        limit: int = 100,
    ) -> list[AlarmRecord]:
        """Alarms matching the filters, newest first."""
        return await self.store.query(
            machine_id=machine_id,
            kind=kind,
            status=status,
            severity=severity,
            limit=limit,
        )

    async def statistics(self) -> AlarmStatistics:
        alarms = await self.store.query()
        stats = AlarmStatistics(total=len(alarms))
        for alarm in alarms:
            if alarm.status == AlarmStatus.ACTIVE.value:
                stats.active += 1
            elif alarm.status == AlarmStatus.ACKNOWLEDGED.value:
                stats.acknowledged += 1
            elif alarm.status == AlarmStatus.RESOLVED.value:
                stats.resolved += 1
            stats.by_severity[alarm.severity] = stats.by_severity.get(alarm.severity, 0) + 1
            stats.by_kind[alarm.kind] = stats.by_kind.get(alarm.kind, 0) + 1
        return stats
