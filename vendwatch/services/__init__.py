"""
Monitor Services

- alarms.py - alarm creation, dedup and lifecycle
- detector.py - offline detection cycle
- cleaning.py - cleaning debt cycle
- live_status.py - push-based live status
- notifier.py - alarm notifications (email)
"""

from .alarms import AlarmEngine, AlarmStatistics, PurgeResult
from .cleaning import CleaningScheduler, CleaningStatistics, CleaningStats, classify_cleaning
from .detector import CycleStats, Liveness, OfflineDetector, classify
from .live_status import LiveStatus, LiveStatusPublisher, Subscription
from .notifier import AlarmNotifier, Notification, NotificationDispatcher, ResendEmailDispatcher

__all__ = [
    "AlarmEngine",
    "AlarmStatistics",
    "PurgeResult",
    "CleaningScheduler",
    "CleaningStatistics",
    "CleaningStats",
    "classify_cleaning",
    "CycleStats",
    "Liveness",
    "OfflineDetector",
    "classify",
    "LiveStatus",
    "LiveStatusPublisher",
    "Subscription",
    "AlarmNotifier",
    "Notification",
    "NotificationDispatcher",
    "ResendEmailDispatcher",
]
