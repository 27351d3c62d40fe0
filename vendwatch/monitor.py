"""
Monitor Controller

Owns the monitoring services and the two interval loops that drive them:
- offline detector every poll_interval_s (default 120s)
- cleaning scheduler every cleaning_interval_s (default 3600s)
plus the live status publisher, which reacts to heartbeat writes directly.

build_controller() wires a controller from MonitorConfig, choosing the
memory or Supabase storage backend.
"""

from .common.config import (
    CleaningThresholds,
    MachineType,
    MonitorConfig,
    MonitorSettings,
    OfflineThresholds,
    Settings,
    get_settings,
)
from .common.logging_setup import get_service_logger
from .common.scheduler import ScheduledLoop
from .common.timestamp import Clock, utc_now
from .services.alarms import AlarmEngine
from .services.cleaning import CleaningScheduler, CleaningStats
from .services.detector import CycleStats, OfflineDetector
from .services.live_status import LiveStatusPublisher
from .services.notifier import AlarmNotifier, NotificationDispatcher, ResendEmailDispatcher
from .storage.base import AlarmStore, CleaningLog, HeartbeatRepository, MachineRegistry
from .storage.memory import (
    InMemoryAlarmStore,
    InMemoryCleaningLog,
    InMemoryHeartbeatRepository,
    InMemoryMachineRegistry,
)

logger = get_service_logger("monitor")


class MonitorController:
    """
    Lifecycle owner for detection, cleaning checks and live status.

    stop() halts both timers; a cycle already in progress runs to the end.
    """

    def __init__(
        self,
        registry: MachineRegistry,
        heartbeats: HeartbeatRepository,
        alarm_store: AlarmStore,
        cleaning_log: CleaningLog,
        thresholds: OfflineThresholds | None = None,
        cleaning_thresholds: dict[MachineType, CleaningThresholds] | None = None,
        settings: MonitorSettings | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings or MonitorSettings()
        self.thresholds = thresholds or OfflineThresholds()
        self.registry = registry
        self.heartbeats = heartbeats
        self.dispatcher = dispatcher
        self.clock = clock

        notifier = AlarmNotifier(registry, dispatcher) if dispatcher else None
        self.engine = AlarmEngine(alarm_store, notifier=notifier, clock=clock)
        self.detector = OfflineDetector(
            registry,
            heartbeats,
            self.engine,
            self.thresholds,
            max_concurrency=self.settings.max_concurrency,
            clock=clock,
        )
        self.cleaning = CleaningScheduler(
            registry,
            cleaning_log,
            self.engine,
            thresholds=cleaning_thresholds,
            max_concurrency=self.settings.max_concurrency,
            clock=clock,
        )
        self.publisher = LiveStatusPublisher(heartbeats, self.thresholds, clock=clock)

        self._detector_loop = ScheduledLoop(
            self.settings.poll_interval_s, self.detector.run_cycle, name="offline-detector"
        )
        self._cleaning_loop = ScheduledLoop(
            self.settings.cleaning_interval_s, self.cleaning.run_cycle, name="cleaning-scheduler"
        )
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start publisher and both loops. No-op if already running."""
        if self._running:
            return
        self._running = True
        await self.publisher.start()
        await self._detector_loop.start()
        await self._cleaning_loop.start()
        logger.info(
            "Monitor started",
            extra={
                "poll_interval_s": self.settings.poll_interval_s,
                "cleaning_interval_s": self.settings.cleaning_interval_s,
                **self.thresholds.to_dict(),
            },
        )

    def stop(self) -> None:
        """Stop the timers. In-flight cycles are not cancelled."""
        if not self._running:
            return
        self._running = False
        self._detector_loop.stop()
        self._cleaning_loop.stop()
        self.publisher.stop()
        logger.info("Monitor stopped")

    async def shutdown(self) -> None:
        """stop(), then wait for in-flight cycles and pending notifications."""
        self.stop()
        await self._detector_loop.wait_stopped()
        await self._cleaning_loop.wait_stopped()
        if self.dispatcher is not None:
            await self.dispatcher.aclose()

    async def run_once(self) -> tuple[CycleStats, CleaningStats]:
        """Run one detector cycle and one cleaning cycle now."""
        detector_stats = await self.detector.run_cycle()
        cleaning_stats = await self.cleaning.run_cycle()
        return detector_stats, cleaning_stats

    def configure_thresholds(
        self,
        default_offline_s: float | None = None,
        critical_offline_s: float | None = None,
    ) -> dict:
        """Change the shared offline thresholds; seen by detector and publisher."""
        self.thresholds.configure(default_offline_s, critical_offline_s)
        logger.info("Offline thresholds updated", extra=self.thresholds.to_dict())
        return self.thresholds.to_dict()

    def status(self) -> dict:
        last_cycle = self.detector.last_stats
        last_cleaning = self.cleaning.last_stats
        return {
            "running": self._running,
            "interval_active": self._detector_loop.interval_active,
            "thresholds": self.thresholds.to_dict(),
            "last_cycle": last_cycle.to_dict() if last_cycle else None,
            "last_cleaning_cycle": last_cleaning.to_dict() if last_cleaning else None,
            "schedulers": [
                self._detector_loop.get_stats(),
                self._cleaning_loop.get_stats(),
            ],
        }


def build_controller(
    config: MonitorConfig,
    settings: Settings | None = None,
    dispatcher: NotificationDispatcher | None = None,
    clock: Clock = utc_now,
) -> MonitorController:
    """
    Wire a controller for the configured storage backend.

    Args:
        config: Validated monitor configuration
        settings: Environment settings (defaults to get_settings())
        dispatcher: Notification delivery (defaults to Resend email)
        clock: Time source for every service
    """
    settings = settings or get_settings()

    if config.storage.backend == "supabase":
        from .storage.supabase_store import (
            SupabaseAlarmStore,
            SupabaseCleaningLog,
            SupabaseHeartbeatRepository,
            SupabaseMachineRegistry,
            SupabaseService,
        )

        service = SupabaseService(settings)
        registry = SupabaseMachineRegistry(service)
        heartbeats = SupabaseHeartbeatRepository(service)
        alarm_store = SupabaseAlarmStore(service)
        cleaning_log = SupabaseCleaningLog(service)
    else:
        registry = InMemoryMachineRegistry(config.machines)
        heartbeats = InMemoryHeartbeatRepository()
        alarm_store = InMemoryAlarmStore()
        cleaning_log = InMemoryCleaningLog()

    logger.info(
        f"Building monitor with {config.storage.backend} storage",
        extra={"backend": config.storage.backend},
    )

    return MonitorController(
        registry=registry,
        heartbeats=heartbeats,
        alarm_store=alarm_store,
        cleaning_log=cleaning_log,
        thresholds=config.offline_thresholds(),
        cleaning_thresholds=config.cleaning_thresholds,
        settings=config.monitor,
        dispatcher=dispatcher if dispatcher is not None else ResendEmailDispatcher(settings),
        clock=clock,
    )
