"""
Tests for the offline detector.

Covers liveness classification, status writes, alarm escalation and
per-machine failure isolation.
"""

import math

import pytest

from vendwatch.common.config import OfflineThresholds
from vendwatch.common.exceptions import TransientIOError
from vendwatch.services.detector import Liveness, classify
from vendwatch.storage.base import HeartbeatRecord
from vendwatch.storage.memory import InMemoryHeartbeatRepository

NOW_MS = 1_800_000_000_000
MINUTE = 60_000


@pytest.fixture
def default_thresholds():
    return OfflineThresholds(default_offline_s=300, critical_offline_s=900)


# ============================================================
# CLASSIFICATION
# ============================================================

class TestClassify:

    def test_missing_record_is_offline(self, default_thresholds):
        assert classify(None, NOW_MS, default_thresholds) is Liveness.OFFLINE

    @pytest.mark.parametrize("last_seen", [None, "yesterday", True, math.nan, math.inf, [1, 2]])
    def test_unusable_last_seen_is_offline(self, default_thresholds, last_seen):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=last_seen, status="online")
        assert classify(record, NOW_MS, default_thresholds) is Liveness.OFFLINE

    def test_fresh_heartbeat_is_online(self, default_thresholds):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=NOW_MS - 2 * MINUTE)
        assert classify(record, NOW_MS, default_thresholds) is Liveness.ONLINE

    def test_exactly_at_threshold_is_still_online(self, default_thresholds):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=NOW_MS - 5 * MINUTE)
        assert classify(record, NOW_MS, default_thresholds) is Liveness.ONLINE

    def test_past_default_threshold_is_offline(self, default_thresholds):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=NOW_MS - 6 * MINUTE)
        assert classify(record, NOW_MS, default_thresholds) is Liveness.OFFLINE

    def test_past_critical_threshold_is_critical(self, default_thresholds):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=NOW_MS - 16 * MINUTE)
        assert classify(record, NOW_MS, default_thresholds) is Liveness.CRITICAL_OFFLINE

    def test_reconfigured_thresholds_apply(self, default_thresholds):
        record = HeartbeatRecord(machine_id="m1", last_seen_at=NOW_MS - 6 * MINUTE)
        default_thresholds.configure(default_offline_s=600)
        assert classify(record, NOW_MS, default_thresholds) is Liveness.ONLINE


# ============================================================
# CYCLES
# ============================================================

class TestDetectorCycle:

    @pytest.mark.asyncio
    async def test_stale_coffee_machine_scenario(self, detector, heartbeats, alarm_store, clock):
        # m1 seen 6 minutes ago; m2/m3 fresh
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(6))
        await heartbeats.record_heartbeat("m2", clock.ms)
        await heartbeats.record_heartbeat("m3", clock.ms)

        stats = await detector.run_cycle()

        record = await heartbeats.read("m1")
        assert record.status == "offline"
        alarms = await alarm_store.query(machine_id="m1")
        assert len(alarms) == 1
        assert alarms[0].kind == "offline"
        assert alarms[0].severity == "high"
        assert stats.offline == 1
        assert stats.online == 2
        assert stats.alarms_created == 1

        # Still 6-7 minutes stale on the next cycle
        clock.advance(minutes=1)
        stats = await detector.run_cycle()

        assert stats.alarms_created == 0
        assert len(await alarm_store.query(machine_id="m1")) == 1

    @pytest.mark.asyncio
    async def test_recovered_machine_keeps_its_alarm(self, detector, heartbeats, alarm_store, clock):
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(6))
        await detector.run_cycle()

        await heartbeats.record_heartbeat("m1", clock.ms)
        stats = await detector.run_cycle()

        record = await heartbeats.read("m1")
        assert record.status == "online"
        assert stats.online >= 1
        alarms = await alarm_store.query(machine_id="m1")
        assert len(alarms) == 1
        assert alarms[0].status == "active"

    @pytest.mark.asyncio
    async def test_never_reported_machine_gets_high_offline_alarm(self, detector, heartbeats, alarm_store):
        stats = await detector.run_cycle()

        assert stats.total == 3
        assert stats.offline == 3
        assert stats.critical_offline == 0
        for machine_id in ("m1", "m2", "m3"):
            alarms = await alarm_store.query(machine_id=machine_id)
            assert [(a.kind, a.severity) for a in alarms] == [("offline", "high")]
            assert (await heartbeats.read(machine_id)).status == "offline"

    @pytest.mark.asyncio
    async def test_offline_machine_escalates_to_critical(self, detector, heartbeats, alarm_store, clock):
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(6))
        await detector.run_cycle()

        clock.advance(minutes=10)
        stats = await detector.run_cycle()

        assert stats.critical_offline == 1
        kinds = sorted(a.kind for a in await alarm_store.query(machine_id="m1"))
        assert kinds == ["critical-offline", "offline"]
        critical = await alarm_store.query(machine_id="m1", kind="critical-offline")
        assert critical[0].severity == "critical"

    @pytest.mark.asyncio
    async def test_status_write_never_touches_last_seen(self, detector, heartbeats, clock):
        last_seen = clock.minutes_ago_ms(20)
        await heartbeats.record_heartbeat("m1", last_seen, {"temp": 4})

        await detector.run_cycle()

        record = await heartbeats.read("m1")
        assert record.status == "offline"
        assert record.last_seen_at == last_seen
        assert record.metrics == {"temp": 4}

    @pytest.mark.asyncio
    async def test_already_offline_is_not_rewritten(self, detector, heartbeats, clock):
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(6))
        await detector.run_cycle()

        writes = []
        heartbeats.add_listener(lambda record: writes.append(record.machine_id))
        await detector.run_cycle()

        assert "m1" not in writes

    @pytest.mark.asyncio
    async def test_online_machine_with_reported_errors(self, detector, heartbeats, alarm_store, clock):
        await heartbeats.record_heartbeat("m1", clock.ms, {"errors": ["compressor fault", "door open"]})
        await heartbeats.record_heartbeat("m2", clock.ms, {"errors": []})
        await heartbeats.record_heartbeat("m3", clock.ms)

        stats = await detector.run_cycle()

        assert stats.online == 3
        errors = await alarm_store.query(kind="error")
        assert len(errors) == 1
        assert errors[0].machine_id == "m1"
        assert errors[0].severity == "high"
        assert "compressor fault" in errors[0].message

    @pytest.mark.asyncio
    async def test_one_failing_machine_does_not_abort_cycle(self, registry, engine, thresholds, clock, alarm_store):
        from vendwatch.services.detector import OfflineDetector

        class FlakyRepository(InMemoryHeartbeatRepository):
            async def read(self, machine_id):
                if machine_id == "m2":
                    raise TransientIOError("connection reset", "heartbeats.read")
                return await super().read(machine_id)

        heartbeats = FlakyRepository()
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(30))
        await heartbeats.record_heartbeat("m3", clock.ms)
        detector = OfflineDetector(registry, heartbeats, engine, thresholds, clock=clock)

        stats = await detector.run_cycle()

        assert stats.failures == 1
        assert stats.critical_offline == 1
        assert stats.online == 1
        assert len(await alarm_store.query(machine_id="m1")) == 1
        assert await alarm_store.query(machine_id="m2") == []

    @pytest.mark.asyncio
    async def test_registry_failure_aborts_cycle(self, heartbeats, engine, thresholds, clock):
        from vendwatch.services.detector import OfflineDetector
        from vendwatch.storage.memory import InMemoryMachineRegistry

        class BrokenRegistry(InMemoryMachineRegistry):
            async def list_machines(self):
                raise TransientIOError("registry unavailable", "machines.list")

        detector = OfflineDetector(BrokenRegistry(), heartbeats, engine, thresholds, clock=clock)

        with pytest.raises(TransientIOError):
            await detector.run_cycle()

    @pytest.mark.asyncio
    async def test_notifications_follow_machine_settings(self, detector, dispatcher):
        # m1 routes offline alerts, m2 only cleaning, m3 has no recipients
        await detector.run_cycle()

        assert len(dispatcher.sent) == 1
        assert dispatcher.sent[0].recipients == ("ops@example.com",)
        assert "Lobby Coffee" in dispatcher.sent[0].subject

    @pytest.mark.asyncio
    async def test_last_stats_recorded(self, detector):
        assert detector.last_stats is None
        stats = await detector.run_cycle()
        assert detector.last_stats is stats
        assert stats.to_dict()["started_at"].startswith("2026-03-02")
