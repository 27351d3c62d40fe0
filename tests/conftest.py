"""
vendwatch - Test Fixtures (conftest.py)
Shared fixtures for all test modules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from vendwatch.common.config import (
    Machine,
    MachineType,
    MonitorSettings,
    NotificationConfig,
    OfflineThresholds,
)
from vendwatch.common.timestamp import MS_PER_MINUTE, to_epoch_ms
from vendwatch.monitor import MonitorController
from vendwatch.services.alarms import AlarmEngine
from vendwatch.services.cleaning import CleaningScheduler
from vendwatch.services.detector import OfflineDetector
from vendwatch.services.live_status import LiveStatusPublisher
from vendwatch.services.notifier import AlarmNotifier, NotificationDispatcher
from vendwatch.storage.memory import (
    InMemoryAlarmStore,
    InMemoryCleaningLog,
    InMemoryHeartbeatRepository,
    InMemoryMachineRegistry,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock; call it to get the current time."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    @property
    def ms(self) -> float:
        return to_epoch_ms(self.now)

    def minutes_ago_ms(self, minutes: float) -> float:
        return self.ms - minutes * MS_PER_MINUTE


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every submitted notification."""

    def __init__(self):
        self.sent = []

    def submit(self, notification) -> None:
        self.sent.append(notification)


# ── Clock & machines ─────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def machines():
    return [
        Machine(
            id="m1",
            type=MachineType.COFFEE,
            name="Lobby Coffee",
            serial_number="CF-1",
            notifications=NotificationConfig(recipients=("ops@example.com",)),
        ),
        Machine(
            id="m2",
            type=MachineType.ICE_CREAM,
            name="Mall Ice Cream",
            serial_number="IC-2",
            notifications=NotificationConfig(
                recipients=("ops@example.com",),
                enabled_alerts=frozenset({"cleaning"}),
            ),
        ),
        Machine(id="m3", type=MachineType.SNACK, name="Station Snacks"),
    ]


# ── Storage ──────────────────────────────────────────────────────────────────

@pytest.fixture
def registry(machines):
    return InMemoryMachineRegistry(machines)


@pytest.fixture
def heartbeats():
    return InMemoryHeartbeatRepository()


@pytest.fixture
def alarm_store():
    return InMemoryAlarmStore()


@pytest.fixture
def cleaning_log():
    return InMemoryCleaningLog()


@pytest.fixture
def thresholds():
    return OfflineThresholds(default_offline_s=300, critical_offline_s=900)


# ── Services ─────────────────────────────────────────────────────────────────

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine(alarm_store, registry, dispatcher, clock):
    return AlarmEngine(alarm_store, notifier=AlarmNotifier(registry, dispatcher), clock=clock)


@pytest.fixture
def detector(registry, heartbeats, engine, thresholds, clock):
    return OfflineDetector(registry, heartbeats, engine, thresholds, max_concurrency=4, clock=clock)


@pytest.fixture
def cleaning_scheduler(registry, cleaning_log, engine, clock):
    return CleaningScheduler(registry, cleaning_log, engine, max_concurrency=4, clock=clock)


@pytest.fixture
def publisher(heartbeats, thresholds, clock):
    return LiveStatusPublisher(heartbeats, thresholds, clock=clock)


@pytest.fixture
def controller(registry, heartbeats, alarm_store, cleaning_log, thresholds, dispatcher, clock):
    return MonitorController(
        registry=registry,
        heartbeats=heartbeats,
        alarm_store=alarm_store,
        cleaning_log=cleaning_log,
        thresholds=thresholds,
        settings=MonitorSettings(poll_interval_s=3600, cleaning_interval_s=3600, max_concurrency=4),
        dispatcher=dispatcher,
        clock=clock,
    )
