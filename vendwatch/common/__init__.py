"""
Common Utilities

Shared modules used across all services:
- config.py - Domain enums and configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Interval loop for monitoring cycles
- timestamp.py - Clock and epoch-ms helpers
- validator.py - Raw configuration validation
"""

from .config import (
    AlarmKind,
    AlarmStatus,
    CleaningSeverity,
    CleaningThresholds,
    DEFAULT_CLEANING_THRESHOLDS,
    Machine,
    MachineType,
    MonitorConfig,
    MonitorSettings,
    NotificationConfig,
    OfflineThresholds,
    Settings,
    Severity,
    StorageSettings,
    get_settings,
    load_machine,
    load_monitor_config,
)
from .exceptions import (
    VendwatchError,
    NotFoundError,
    InvalidStateError,
    TransientIOError,
    ConfigValidationError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_alarm,
    log_cycle,
)
from .scheduler import ScheduledLoop, run_bounded

__all__ = [
    # Config
    "AlarmKind",
    "AlarmStatus",
    "CleaningSeverity",
    "CleaningThresholds",
    "DEFAULT_CLEANING_THRESHOLDS",
    "Machine",
    "MachineType",
    "MonitorConfig",
    "MonitorSettings",
    "NotificationConfig",
    "OfflineThresholds",
    "Settings",
    "Severity",
    "StorageSettings",
    "get_settings",
    "load_machine",
    "load_monitor_config",
    # Exceptions
    "VendwatchError",
    "NotFoundError",
    "InvalidStateError",
    "TransientIOError",
    "ConfigValidationError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_alarm",
    "log_cycle",
    # Scheduling
    "ScheduledLoop",
    "run_bounded",
]
