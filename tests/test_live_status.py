"""
Tests for the live status publisher.
"""

import pytest

from vendwatch.services.live_status import LiveStatus
from vendwatch.storage.base import HeartbeatRecord
from vendwatch.storage.memory import InMemoryHeartbeatRepository


class TestLiveStatusPublisher:

    @pytest.mark.asyncio
    async def test_start_loads_existing_records(self, thresholds, clock):
        from vendwatch.services.live_status import LiveStatusPublisher

        heartbeats = InMemoryHeartbeatRepository([
            HeartbeatRecord("m1", last_seen_at=clock.minutes_ago_ms(1), status="online"),
            HeartbeatRecord("m2", last_seen_at=clock.minutes_ago_ms(10), status="online"),
            HeartbeatRecord("m3", last_seen_at=None, status="unknown"),
        ])
        publisher = LiveStatusPublisher(heartbeats, thresholds, clock=clock)

        await publisher.start()
        snapshot = publisher.snapshot()

        assert snapshot["m1"].is_offline is False
        assert snapshot["m2"].is_offline is True
        assert snapshot["m3"] == LiveStatus(status="unknown", last_seen_at=None, is_offline=True)

    @pytest.mark.asyncio
    async def test_pushes_on_every_heartbeat(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []
        publisher.subscribe(received.append)

        await heartbeats.record_heartbeat("m1", clock.ms)
        await heartbeats.record_heartbeat("m2", clock.minutes_ago_ms(7))

        assert len(received) == 2
        assert set(received[-1]) == {"m1", "m2"}
        assert received[-1]["m1"].is_offline is False
        assert received[-1]["m2"].is_offline is True

    @pytest.mark.asyncio
    async def test_detector_status_write_is_pushed(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []
        publisher.subscribe(received.append)

        await heartbeats.write_status("m1", "offline")

        assert received[-1]["m1"].status == "offline"
        assert received[-1]["m1"].is_offline is True

    @pytest.mark.asyncio
    async def test_non_numeric_last_seen(self, publisher, heartbeats):
        await publisher.start()
        await heartbeats.record_heartbeat("m1", "garbage")

        entry = publisher.snapshot()["m1"]
        assert entry.is_offline is True
        assert entry.last_seen_at is None

    @pytest.mark.asyncio
    async def test_uses_shared_threshold(self, publisher, heartbeats, thresholds, clock):
        await publisher.start()
        thresholds.configure(default_offline_s=600)

        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(7))

        assert publisher.snapshot()["m1"].is_offline is False

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent_and_final(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []
        subscription = publisher.subscribe(received.append)

        await heartbeats.record_heartbeat("m1", clock.ms)
        subscription.unsubscribe()
        subscription.unsubscribe()
        await heartbeats.record_heartbeat("m1", clock.ms)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_during_fan_out(self, publisher, heartbeats, clock):
        await publisher.start()
        late_calls = []
        subscriptions = {}

        def first(statuses):
            subscriptions["second"].unsubscribe()

        subscriptions["first"] = publisher.subscribe(first)
        subscriptions["second"] = publisher.subscribe(late_calls.append)

        await heartbeats.record_heartbeat("m1", clock.ms)

        assert late_calls == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []

        def broken(statuses):
            raise RuntimeError("UI socket closed")

        publisher.subscribe(broken)
        publisher.subscribe(received.append)

        record = await heartbeats.record_heartbeat("m1", clock.ms)

        assert record.status == "online"
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_stop_detaches_from_repository(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []
        publisher.subscribe(received.append)
        publisher.stop()

        await heartbeats.record_heartbeat("m1", clock.ms)

        assert received == []
        assert "m1" not in publisher.snapshot()

    @pytest.mark.asyncio
    async def test_refresh_rereads_repository(self, publisher, heartbeats, clock):
        await publisher.start()
        publisher.stop()
        await heartbeats.record_heartbeat("m9", clock.ms)

        snapshot = await publisher.refresh()

        assert "m9" in snapshot

    @pytest.mark.asyncio
    async def test_silent_machine_goes_offline_on_other_push(self, publisher, heartbeats, clock):
        await publisher.start()
        received = []
        publisher.subscribe(received.append)

        await heartbeats.record_heartbeat("m1", clock.ms)
        await heartbeats.record_heartbeat("m2", clock.ms)
        clock.advance(minutes=10)
        await heartbeats.record_heartbeat("m2", clock.ms)

        assert received[-1]["m1"].is_offline is True
        assert received[-1]["m2"].is_offline is False
        assert publisher.snapshot()["m1"].is_offline is True

    @pytest.mark.asyncio
    async def test_snapshot_tracks_time_and_thresholds(self, publisher, heartbeats, thresholds, clock):
        await publisher.start()
        await heartbeats.record_heartbeat("m1", clock.ms)

        clock.advance(minutes=7)
        assert publisher.snapshot()["m1"].is_offline is True

        thresholds.configure(default_offline_s=600)
        assert publisher.snapshot()["m1"].is_offline is False
