"""
Configuration Dataclasses

Type-safe configuration and domain structures for the monitor.
The monitor file (YAML) is loaded through load_monitor_config();
secrets come from the environment through Settings.
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigValidationError


class MachineType(str, Enum):
    """Vending machine types - must match the registry's type column"""
    ICE_CREAM = "ice_cream"
    COFFEE = "coffee"
    SNACK = "snack"
    PERFUME = "perfume"


class AlarmKind(str, Enum):
    """Categories of abnormal condition; dedup is keyed on (machine, kind)"""
    OFFLINE = "offline"
    CRITICAL_OFFLINE = "critical-offline"
    CLEANING_ROUTINE = "cleaning-routine"
    CLEANING_DEEP = "cleaning-deep"
    CLEANING_EMERGENCY = "cleaning-emergency"
    CLEANING_OVERDUE = "cleaning-overdue"
    ERROR = "error"

    @property
    def category(self) -> str:
        """Notification category used by per-machine alert switches"""
        if self in (AlarmKind.OFFLINE, AlarmKind.CRITICAL_OFFLINE):
            return "offline"
        if self.value.startswith("cleaning-"):
            return "cleaning"
        return "error"


class AlarmStatus(str, Enum):
    """Alarm lifecycle states"""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Severity(str, Enum):
    """Alarm severity levels (ordered from low to high)"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_HIERARCHY[self.value]


# Severity hierarchy (higher number = more severe)
SEVERITY_HIERARCHY = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


class CleaningSeverity(str, Enum):
    """Cleaning debt levels, in increasing order"""
    ROUTINE = "routine"
    DEEP = "deep"
    EMERGENCY = "emergency"
    OVERDUE = "overdue"

    @property
    def alarm_kind(self) -> AlarmKind:
        return AlarmKind(f"cleaning-{self.value}")

    @property
    def alarm_severity(self) -> Severity:
        return CLEANING_ALARM_SEVERITY[self]


CLEANING_ALARM_SEVERITY = {
    CleaningSeverity.ROUTINE: Severity.LOW,
    CleaningSeverity.DEEP: Severity.MEDIUM,
    CleaningSeverity.EMERGENCY: Severity.HIGH,
    CleaningSeverity.OVERDUE: Severity.CRITICAL,
}

ALERT_CATEGORIES = ("offline", "error", "cleaning")


@dataclass(frozen=True)
class NotificationConfig:
    """Per-machine notification routing"""
    recipients: tuple[str, ...] = ()
    enabled_alerts: frozenset[str] = frozenset(ALERT_CATEGORIES)
    # Carried with the machine; detection thresholds stay process-wide
    alert_threshold_minutes: int = 5

    def allows(self, kind: AlarmKind) -> bool:
        return kind.category in self.enabled_alerts


@dataclass(frozen=True)
class Machine:
    """A machine as listed by the registry (immutable during a cycle)"""
    id: str
    type: MachineType
    name: str
    serial_number: str = ""
    location: str = ""
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    @property
    def display_name(self) -> str:
        if self.serial_number:
            return f"{self.name} ({self.serial_number})"
        return self.name


class OfflineThresholds:
    """
    Process-wide liveness thresholds.

    One instance is shared by reference between the offline detector and
    the live status publisher, so a runtime change is seen by both.
    """

    def __init__(self, default_offline_s: float = 300, critical_offline_s: float = 900):
        _check_offline_thresholds(default_offline_s, critical_offline_s)
        self.default_offline_s = float(default_offline_s)
        self.critical_offline_s = float(critical_offline_s)

    @property
    def default_offline_ms(self) -> float:
        return self.default_offline_s * 1000

    @property
    def critical_offline_ms(self) -> float:
        return self.critical_offline_s * 1000

    def configure(
        self,
        default_offline_s: float | None = None,
        critical_offline_s: float | None = None,
    ) -> None:
        """Update thresholds in place; both values are validated together."""
        new_default = self.default_offline_s if default_offline_s is None else default_offline_s
        new_critical = self.critical_offline_s if critical_offline_s is None else critical_offline_s
        _check_offline_thresholds(new_default, new_critical)
        self.default_offline_s = float(new_default)
        self.critical_offline_s = float(new_critical)

    def to_dict(self) -> dict:
        return {
            "default_offline_s": self.default_offline_s,
            "critical_offline_s": self.critical_offline_s,
        }


def _check_offline_thresholds(default_s: Any, critical_s: Any) -> None:
    errors = []
    for name, value in (("default_offline_s", default_s), ("critical_offline_s", critical_s)):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            errors.append(f"{name} must be a positive number, got {value!r}")
    if not errors and critical_s < default_s:
        errors.append("critical_offline_s must not be lower than default_offline_s")
    if errors:
        raise ConfigValidationError("invalid offline thresholds", errors)


@dataclass(frozen=True)
class CleaningThresholds:
    """Days since last cleaning at which each severity starts"""
    routine: int
    deep: int
    emergency: int
    overdue: int

    def __post_init__(self):
        values = [self.routine, self.deep, self.emergency, self.overdue]
        if any(isinstance(v, bool) or not isinstance(v, int) or v <= 0 for v in values):
            raise ConfigValidationError(f"cleaning thresholds must be positive integers: {values}")
        if values != sorted(set(values)):
            raise ConfigValidationError(f"cleaning thresholds must be strictly increasing: {values}")

    def for_severity(self, severity: CleaningSeverity) -> int:
        return getattr(self, severity.value)


DEFAULT_CLEANING_THRESHOLDS: dict[MachineType, CleaningThresholds] = {
    MachineType.ICE_CREAM: CleaningThresholds(routine=3, deep=7, emergency=10, overdue=14),
    MachineType.COFFEE: CleaningThresholds(routine=5, deep=10, emergency=15, overdue=21),
    MachineType.SNACK: CleaningThresholds(routine=7, deep=14, emergency=21, overdue=30),
    MachineType.PERFUME: CleaningThresholds(routine=10, deep=20, emergency=30, overdue=45),
}


@dataclass
class MonitorSettings:
    """Loop cadence and fan-out"""
    poll_interval_s: float = 120.0
    cleaning_interval_s: float = 3600.0
    max_concurrency: int = 10


@dataclass
class StorageSettings:
    """Which backend the collaborators live in"""
    backend: str = "memory"  # memory, supabase


@dataclass
class MonitorConfig:
    """Complete monitor configuration"""
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    default_offline_minutes: float = 5.0
    critical_offline_minutes: float = 15.0
    cleaning_thresholds: dict[MachineType, CleaningThresholds] = field(
        default_factory=lambda: dict(DEFAULT_CLEANING_THRESHOLDS)
    )
    storage: StorageSettings = field(default_factory=StorageSettings)
    # Seed for the in-memory registry (ignored by the Supabase backend)
    machines: list[Machine] = field(default_factory=list)

    def offline_thresholds(self) -> OfflineThresholds:
        return OfflineThresholds(
            default_offline_s=self.default_offline_minutes * 60,
            critical_offline_s=self.critical_offline_minutes * 60,
        )


class Settings(BaseSettings):
    """
    Secrets and endpoints loaded from environment variables.

    Create a .env file with:
    - SUPABASE_URL=https://xxx.supabase.co
    - SUPABASE_SERVICE_KEY=your-service-role-key
    - RESEND_API_KEY=re_xxx
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    supabase_url: str = ""
    supabase_service_key: str = ""
    resend_api_key: str = ""
    resend_from_email: str = "Vendwatch <alerts@vendwatch.local>"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


def load_machine(data: dict) -> Machine:
    """Build a Machine from a registry row or YAML entry"""
    notif = data.get("notifications") or {}
    enabled = notif.get("enabled_alerts")
    return Machine(
        id=str(data["id"]),
        type=MachineType(data["type"]),
        name=data.get("name", str(data["id"])),
        serial_number=data.get("serial_number", "") or "",
        location=data.get("location", "") or "",
        notifications=NotificationConfig(
            recipients=tuple(notif.get("recipients", [])),
            enabled_alerts=frozenset(enabled) if enabled is not None else frozenset(ALERT_CATEGORIES),
            alert_threshold_minutes=notif.get("alert_threshold_minutes", 5),
        ),
    )


def load_monitor_config(data: dict | None) -> MonitorConfig:
    """
    Load MonitorConfig from a dictionary (e.g., parsed YAML).

    Raises:
        ConfigValidationError: if the dictionary fails validation
    """
    from .validator import ConfigValidator

    data = data or {}
    is_valid, errors = ConfigValidator().validate(data)
    if not is_valid:
        raise ConfigValidationError(f"{len(errors)} configuration error(s)", errors)

    monitor_data = data.get("monitor", {})
    monitor = MonitorSettings(
        poll_interval_s=monitor_data.get("poll_interval_s", 120.0),
        cleaning_interval_s=monitor_data.get("cleaning_interval_s", 3600.0),
        max_concurrency=monitor_data.get("max_concurrency", 10),
    )

    thresholds_data = data.get("thresholds", {})

    cleaning = dict(DEFAULT_CLEANING_THRESHOLDS)
    for type_name, values in data.get("cleaning_thresholds", {}).items():
        cleaning[MachineType(type_name)] = CleaningThresholds(**values)

    return MonitorConfig(
        monitor=monitor,
        default_offline_minutes=thresholds_data.get("default_offline_minutes", 5.0),
        critical_offline_minutes=thresholds_data.get("critical_offline_minutes", 15.0),
        cleaning_thresholds=cleaning,
        storage=StorageSettings(backend=data.get("storage", {}).get("backend", "memory")),
        machines=[load_machine(m) for m in data.get("machines", [])],
    )
