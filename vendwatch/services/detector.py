"""
Offline Detector

Periodic liveness scan over every registered machine.

Classification uses heartbeat age (now - last_seen_at, epoch ms):
    age > critical_offline  -> CRITICAL_OFFLINE (critical-offline alarm, critical)
    age > default_offline   -> OFFLINE          (offline alarm, high)
    otherwise               -> ONLINE
A machine with no record, or whose last_seen_at is not a number, has no
measurable age: it is OFFLINE and is never escalated to critical.

For stale machines the detector writes status=offline (only when the stored
status differs) and asks the alarm engine for exactly one alarm. It never
resolves alarms when a machine comes back.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum

from ..common.config import AlarmKind, Machine, OfflineThresholds, Severity
from ..common.logging_setup import get_service_logger, log_cycle
from ..common.scheduler import run_bounded
from ..common.timestamp import MS_PER_MINUTE, Clock, is_epoch_number, to_epoch_ms, utc_now
from ..storage.base import HeartbeatRecord, HeartbeatRepository, MachineRegistry
from .alarms import AlarmEngine

logger = get_service_logger("detector")

OFFLINE_STATUS = "offline"


class Liveness(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CRITICAL_OFFLINE = "critical-offline"


@dataclass
class CycleStats:
    """Summary of one detector cycle"""
    total: int = 0
    online: int = 0
    offline: int = 0
    critical_offline: int = 0
    alarms_created: int = 0
    failures: int = 0
    started_at: datetime | None = None
    duration_s: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


def heartbeat_age_ms(record: HeartbeatRecord | None, now_ms: float) -> float | None:
    """Age of the last heartbeat, or None when it cannot be measured."""
    if record is None or not is_epoch_number(record.last_seen_at):
        return None
    return now_ms - record.last_seen_at


def classify(
    record: HeartbeatRecord | None,
    now_ms: float,
    thresholds: OfflineThresholds,
) -> Liveness:
    """Classify one heartbeat record. Pure function of its inputs."""
    age = heartbeat_age_ms(record, now_ms)
    if age is None:
        return Liveness.OFFLINE
    if age > thresholds.critical_offline_ms:
        return Liveness.CRITICAL_OFFLINE
    if age > thresholds.default_offline_ms:
        return Liveness.OFFLINE
    return Liveness.ONLINE


def _offline_message(machine: Machine, record: HeartbeatRecord | None, liveness: Liveness, age: float | None) -> str:
    if record is None:
        return f"No heartbeat received from {machine.display_name}"
    if age is None:
        return f"Invalid heartbeat data from {machine.display_name}"
    minutes = int(age // MS_PER_MINUTE)
    if liveness is Liveness.CRITICAL_OFFLINE:
        return f"{machine.display_name} critically offline (last seen {minutes}m ago)"
    return f"{machine.display_name} offline (last seen {minutes}m ago)"


class OfflineDetector:
    """
    Scans all machines and raises liveness alarms.

    The thresholds object is shared with the live status publisher; changing
    it through OfflineThresholds.configure() affects the next cycle.
    """

    def __init__(
        self,
        registry: MachineRegistry,
        heartbeats: HeartbeatRepository,
        engine: AlarmEngine,
        thresholds: OfflineThresholds,
        max_concurrency: int = 10,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.heartbeats = heartbeats
        self.engine = engine
        self.thresholds = thresholds
        self.max_concurrency = max_concurrency
        self._clock = clock
        self.last_stats: CycleStats | None = None

    async def run_cycle(self) -> CycleStats:
        """
        Evaluate every machine once.

        A failure on one machine is logged and counted; the others are
        still evaluated. A registry failure aborts the cycle.
        """
        started = self._clock()
        t0 = time.monotonic()
        now_ms = to_epoch_ms(started)

        machines = await self.registry.list_machines()
        stats = CycleStats(total=len(machines), started_at=started)

        results = await run_bounded(
            machines,
            lambda machine: self.evaluate(machine, now_ms),
            self.max_concurrency,
        )

        for machine, result in results:
            if isinstance(result, Exception):
                stats.failures += 1
                logger.error(
                    f"Liveness check failed for {machine.id}: {result}",
                    exc_info=result,
                    extra={"machine_id": machine.id},
                )
                continue

            liveness, created = result
            if liveness is Liveness.ONLINE:
                stats.online += 1
            elif liveness is Liveness.CRITICAL_OFFLINE:
                stats.critical_offline += 1
            else:
                stats.offline += 1
            stats.alarms_created += created

        stats.duration_s = round(time.monotonic() - t0, 3)
        self.last_stats = stats
        log_cycle(logger, "detector", stats.to_dict())
        return stats

    async def evaluate(self, machine: Machine, now_ms: float) -> tuple[Liveness, int]:
        """
        Check one machine.

        Returns:
            (liveness, number of alarms newly inserted)
        """
        record = await self.heartbeats.read(machine.id)
        liveness = classify(record, now_ms, self.thresholds)

        if liveness is Liveness.ONLINE:
            created = await self._check_reported_errors(machine, record)
            return liveness, created

        age = heartbeat_age_ms(record, now_ms)
        if record is None or record.status != OFFLINE_STATUS:
            await self.heartbeats.write_status(machine.id, OFFLINE_STATUS)
            logger.warning(
                f"Machine {machine.display_name} went offline",
                extra={"machine_id": machine.id, "age_ms": age},
            )

        if liveness is Liveness.CRITICAL_OFFLINE:
            kind, severity = AlarmKind.CRITICAL_OFFLINE, Severity.CRITICAL
        else:
            kind, severity = AlarmKind.OFFLINE, Severity.HIGH

        _, created = await self.engine.open_alarm(
            machine.id,
            kind,
            _offline_message(machine, record, liveness, age),
            severity,
            metadata={
                "machine_name": machine.name,
                "serial_number": machine.serial_number,
                "last_seen_at": record.last_seen_at if age is not None else None,
            },
        )
        return liveness, int(created)

    async def _check_reported_errors(self, machine: Machine, record: HeartbeatRecord) -> int:
        errors = record.metrics.get("errors") if isinstance(record.metrics, dict) else None
        if not errors or not isinstance(errors, (list, tuple)):
            return 0

        _, created = await self.engine.open_alarm(
            machine.id,
            AlarmKind.ERROR,
            f"Machine error on {machine.display_name}: {', '.join(str(e) for e in errors)}",
            Severity.HIGH,
            metadata={"errors": list(errors)},
        )
        return int(created)
