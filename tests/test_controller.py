"""
Tests for MonitorController lifecycle and wiring.
"""

import asyncio

import pytest

from vendwatch.common.config import Settings, load_monitor_config
from vendwatch.common.exceptions import ConfigValidationError
from vendwatch.monitor import build_controller
from vendwatch.storage.memory import InMemoryAlarmStore, InMemoryMachineRegistry


class TestMonitorController:

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_runs_immediately(self, controller, alarm_store):
        await controller.start()
        await controller.start()

        assert controller.is_running
        status = controller.status()
        assert status["running"] is True
        assert status["interval_active"] is True
        assert [s["name"] for s in status["schedulers"]] == ["offline-detector", "cleaning-scheduler"]

        # Both loops fire their first cycle right away
        for _ in range(100):
            if controller.detector.last_stats and controller.cleaning.last_stats:
                break
            await asyncio.sleep(0.01)

        await controller.shutdown()

        assert not controller.is_running
        assert controller.status()["interval_active"] is False
        assert controller.status()["last_cycle"]["total"] == 3
        assert controller.status()["last_cleaning_cycle"]["total"] == 3

    @pytest.mark.asyncio
    async def test_run_once(self, controller, alarm_store, dispatcher):
        detector_stats, cleaning_stats = await controller.run_once()

        # No heartbeats and no cleanings anywhere
        assert detector_stats.offline == 3
        assert detector_stats.alarms_created == 3
        assert cleaning_stats.needing_cleaning == 3
        assert cleaning_stats.alarms_created == 3
        assert len(await alarm_store.query(status="active")) == 6

        # m1: offline + cleaning, m2: cleaning only, m3: no recipients
        assert len(dispatcher.sent) == 3

    @pytest.mark.asyncio
    async def test_status_before_any_cycle(self, controller):
        status = controller.status()
        assert status["running"] is False
        assert status["last_cycle"] is None
        assert status["last_cleaning_cycle"] is None
        assert status["thresholds"] == {"default_offline_s": 300.0, "critical_offline_s": 900.0}

    @pytest.mark.asyncio
    async def test_thresholds_are_shared(self, controller, heartbeats, clock):
        await controller.publisher.start()
        await heartbeats.record_heartbeat("m1", clock.minutes_ago_ms(7))
        assert controller.publisher.snapshot()["m1"].is_offline is True

        result = controller.configure_thresholds(default_offline_s=600)

        assert result["default_offline_s"] == 600
        assert controller.detector.thresholds is controller.thresholds
        assert controller.publisher.thresholds is controller.thresholds
        await controller.publisher.refresh()
        assert controller.publisher.snapshot()["m1"].is_offline is False

        controller.publisher.stop()

    def test_invalid_thresholds_rejected(self, controller):
        with pytest.raises(ConfigValidationError):
            controller.configure_thresholds(default_offline_s=1000)
        assert controller.thresholds.default_offline_s == 300


class TestBuildController:

    @pytest.mark.asyncio
    async def test_memory_backend_from_config(self, dispatcher):
        config = load_monitor_config({
            "thresholds": {"default_offline_minutes": 2, "critical_offline_minutes": 6},
            "machines": [{"id": "v1", "type": "coffee", "name": "Lobby"}],
        })

        controller = build_controller(config, settings=Settings(_env_file=None), dispatcher=dispatcher)

        assert isinstance(controller.registry, InMemoryMachineRegistry)
        assert isinstance(controller.engine.store, InMemoryAlarmStore)
        assert controller.thresholds.to_dict() == {"default_offline_s": 120.0, "critical_offline_s": 360.0}
        assert [m.id for m in await controller.registry.list_machines()] == ["v1"]
        assert controller.dispatcher is dispatcher

    def test_default_dispatcher_is_resend(self):
        from vendwatch.services.notifier import ResendEmailDispatcher

        controller = build_controller(load_monitor_config({}), settings=Settings(_env_file=None))

        assert isinstance(controller.dispatcher, ResendEmailDispatcher)
