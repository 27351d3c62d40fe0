"""
Storage Layer

- base.py - records and abstract collaborators
- memory.py - in-process backend (local runs, tests)
- supabase_store.py - Supabase backend
"""

from .base import (
    AlarmRecord,
    AlarmStore,
    CleaningEntry,
    CleaningLog,
    HeartbeatRecord,
    HeartbeatRepository,
    MachineRegistry,
)
from .memory import (
    InMemoryAlarmStore,
    InMemoryCleaningLog,
    InMemoryHeartbeatRepository,
    InMemoryMachineRegistry,
)

__all__ = [
    "AlarmRecord",
    "AlarmStore",
    "CleaningEntry",
    "CleaningLog",
    "HeartbeatRecord",
    "HeartbeatRepository",
    "MachineRegistry",
    "InMemoryAlarmStore",
    "InMemoryCleaningLog",
    "InMemoryHeartbeatRepository",
    "InMemoryMachineRegistry",
]
