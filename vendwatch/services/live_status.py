"""
Live Status Publisher

Push-based view of every machine's liveness, driven by the heartbeat
repository's change feed instead of the detector's poll interval.

The publisher keeps the raw heartbeat records. Every time one changes, the
whole map is recomputed against the current time and the shared default
offline threshold, and pushed to all subscribers synchronously in the
writer's context. snapshot() is computed the same way at read time.

Usage:
    publisher = LiveStatusPublisher(heartbeats, thresholds)
    await publisher.start()
    sub = publisher.subscribe(lambda statuses: print(statuses))
    ...
    sub.unsubscribe()
"""

import threading
from dataclasses import asdict, dataclass
from typing import Callable

from ..common.config import OfflineThresholds
from ..common.logging_setup import get_service_logger
from ..common.timestamp import Clock, is_epoch_number, to_epoch_ms, utc_now
from ..storage.base import HeartbeatRecord, HeartbeatRepository

logger = get_service_logger("live_status")


@dataclass(frozen=True)
class LiveStatus:
    status: str
    last_seen_at: float | None
    is_offline: bool

    def to_dict(self) -> dict:
        return asdict(self)


StatusCallback = Callable[[dict[str, LiveStatus]], None]


class Subscription:
    """Handle returned by subscribe(); unsubscribe() may be called any number of times."""

    def __init__(self, publisher: "LiveStatusPublisher", callback: StatusCallback):
        self._publisher = publisher
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._publisher._discard(self)


class LiveStatusPublisher:
    """Fans live status out to subscribers on every heartbeat change"""

    def __init__(
        self,
        heartbeats: HeartbeatRepository,
        thresholds: OfflineThresholds,
        clock: Clock = utc_now,
    ):
        self.heartbeats = heartbeats
        self.thresholds = thresholds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, HeartbeatRecord] = {}
        self._subscriptions: list[Subscription] = []
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Load the current records and attach to the change feed."""
        if self._started:
            return
        self.heartbeats.add_listener(self._on_change)
        self._started = True
        await self.refresh()
        logger.info(f"Live status publisher started ({len(self._records)} machines)")

    def stop(self) -> None:
        if not self._started:
            return
        self.heartbeats.remove_listener(self._on_change)
        self._started = False
        logger.info("Live status publisher stopped")

    async def refresh(self) -> dict[str, LiveStatus]:
        """Re-read every record (picks up writes made by other processes)."""
        records = await self.heartbeats.read_all()
        with self._lock:
            self._records = dict(records)
        return self._publish()

    def subscribe(self, callback: StatusCallback) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def snapshot(self) -> dict[str, LiveStatus]:
        with self._lock:
            records = list(self._records.values())
        return self._compute_all(records)

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _now_ms(self) -> float:
        return to_epoch_ms(self._clock())

    def _compute(self, record: HeartbeatRecord, now_ms: float) -> LiveStatus:
        if not is_epoch_number(record.last_seen_at):
            return LiveStatus(status=record.status, last_seen_at=None, is_offline=True)
        age = now_ms - record.last_seen_at
        return LiveStatus(
            status=record.status,
            last_seen_at=record.last_seen_at,
            is_offline=age > self.thresholds.default_offline_ms,
        )

    def _compute_all(self, records: list[HeartbeatRecord]) -> dict[str, LiveStatus]:
        now_ms = self._now_ms()
        return {record.machine_id: self._compute(record, now_ms) for record in records}

    def _on_change(self, record: HeartbeatRecord) -> None:
        with self._lock:
            self._records[record.machine_id] = record
        self._publish()

    def _publish(self) -> dict[str, LiveStatus]:
        with self._lock:
            records = list(self._records.values())
            subscriptions = list(self._subscriptions)
        snapshot = self._compute_all(records)

        for subscription in subscriptions:
            # Unsubscribed earlier in this same fan-out
            if not subscription.active:
                continue
            try:
                subscription.callback(snapshot)
            except Exception:
                logger.exception("Live status subscriber failed")
        return snapshot
