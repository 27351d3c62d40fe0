"""
Cleaning Scheduler

Tracks cleaning debt per machine and raises cleaning alarms.

Days since last cleaning are whole days (floored); a machine with no
cleaning log entry counts as NEVER_CLEANED_DAYS. Each machine type has its
own thresholds and the highest severity reached wins:

    routine   -> cleaning-routine   (low)
    deep      -> cleaning-deep      (medium)
    emergency -> cleaning-emergency (high)
    overdue   -> cleaning-overdue   (critical)
"""

import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime

from ..common.config import (
    DEFAULT_CLEANING_THRESHOLDS,
    CleaningSeverity,
    CleaningThresholds,
    Machine,
    MachineType,
)
from ..common.exceptions import NotFoundError
from ..common.logging_setup import get_service_logger, log_cycle
from ..common.scheduler import run_bounded
from ..common.timestamp import Clock, utc_now, whole_days_between
from ..storage.base import CleaningEntry, CleaningLog, MachineRegistry
from .alarms import AlarmEngine

logger = get_service_logger("cleaning")

NEVER_CLEANED_DAYS = 999

_MESSAGES = {
    CleaningSeverity.ROUTINE: "needs routine cleaning",
    CleaningSeverity.DEEP: "needs deep cleaning",
    CleaningSeverity.EMERGENCY: "needs emergency cleaning",
    CleaningSeverity.OVERDUE: "is overdue for cleaning",
}


def classify_cleaning(days: int, thresholds: CleaningThresholds) -> CleaningSeverity | None:
    """Highest severity whose threshold has been reached, or None."""
    for severity in reversed(list(CleaningSeverity)):
        if days >= thresholds.for_severity(severity):
            return severity
    return None


@dataclass
class CleaningStats:
    """Summary of one cleaning cycle"""
    total: int = 0
    needing_cleaning: int = 0
    alarms_created: int = 0
    failures: int = 0
    started_at: datetime | None = None
    duration_s: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


@dataclass
class CleaningStatistics:
    """Fleet-wide cleaning overview"""
    total_machines: int = 0
    machines_needing_cleaning: int = 0
    overdue_machines: int = 0
    average_days_since_cleaning: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class CleaningScheduler:
    """Evaluates cleaning debt for the whole fleet"""

    def __init__(
        self,
        registry: MachineRegistry,
        cleaning_log: CleaningLog,
        engine: AlarmEngine,
        thresholds: dict[MachineType, CleaningThresholds] | None = None,
        max_concurrency: int = 10,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.cleaning_log = cleaning_log
        self.engine = engine
        self.thresholds = dict(DEFAULT_CLEANING_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)
        self.max_concurrency = max_concurrency
        self._clock = clock
        self.last_stats: CleaningStats | None = None

    def thresholds_for(self, machine_type: MachineType) -> CleaningThresholds:
        return self.thresholds[machine_type]

    async def days_since_last_cleaning(self, machine_id: str) -> int:
        entry = await self.cleaning_log.last_entry(machine_id)
        if entry is None:
            return NEVER_CLEANED_DAYS
        return whole_days_between(entry.timestamp, self._clock())

    async def run_cycle(self) -> CleaningStats:
        """Check every machine once; per-machine failures are isolated."""
        started = self._clock()
        t0 = time.monotonic()

        machines = await self.registry.list_machines()
        stats = CleaningStats(total=len(machines), started_at=started)

        results = await run_bounded(machines, self.evaluate, self.max_concurrency)
        for machine, result in results:
            if isinstance(result, Exception):
                stats.failures += 1
                logger.error(
                    f"Cleaning check failed for {machine.id}: {result}",
                    exc_info=result,
                    extra={"machine_id": machine.id},
                )
                continue

            severity, created = result
            if severity is not None:
                stats.needing_cleaning += 1
            stats.alarms_created += created

        stats.duration_s = round(time.monotonic() - t0, 3)
        self.last_stats = stats
        log_cycle(logger, "cleaning", stats.to_dict())
        return stats

    async def evaluate(self, machine: Machine) -> tuple[CleaningSeverity | None, int]:
        """
        Check one machine.

        Returns:
            (severity reached or None, number of alarms newly inserted)
        """
        days = await self.days_since_last_cleaning(machine.id)
        severity = classify_cleaning(days, self.thresholds_for(machine.type))
        if severity is None:
            return None, 0

        if days == NEVER_CLEANED_DAYS:
            message = f"{machine.display_name} has never been cleaned"
        else:
            message = f"{machine.display_name} {_MESSAGES[severity]} (last cleaned {days} days ago)"

        _, created = await self.engine.open_alarm(
            machine.id,
            severity.alarm_kind,
            message,
            severity.alarm_severity,
            metadata={
                "machine_type": machine.type.value,
                "days_since_last_cleaning": days,
                "cleaning_type": severity.value,
            },
        )
        return severity, int(created)

    async def statistics(self) -> CleaningStatistics:
        machines = await self.registry.list_machines()
        stats = CleaningStatistics(total_machines=len(machines))
        if not machines:
            return stats

        total_days = 0
        for machine in machines:
            days = await self.days_since_last_cleaning(machine.id)
            total_days += days
            severity = classify_cleaning(days, self.thresholds_for(machine.type))
            if severity is not None:
                stats.machines_needing_cleaning += 1
            if severity is CleaningSeverity.OVERDUE:
                stats.overdue_machines += 1

        stats.average_days_since_cleaning = round(total_days / len(machines))
        return stats

    async def record_cleaning(self, machine_id: str) -> CleaningEntry:
        """Log a cleaning-mode activation for a machine. Open alarms stay open."""
        machine = await self.registry.get(machine_id)
        if machine is None:
            raise NotFoundError("machine", machine_id)

        entry = await self.cleaning_log.append(CleaningEntry(
            id=str(uuid.uuid4()),
            machine_id=machine.id,
            machine_type=machine.type.value,
            timestamp=self._clock(),
        ))
        logger.info(
            f"Cleaning recorded for {machine.display_name}",
            extra={"machine_id": machine.id, "entry_id": entry.id},
        )
        return entry
