"""
Tests for ScheduledLoop and bounded fan-out.
"""

import asyncio

import pytest

from vendwatch.common.scheduler import ScheduledLoop, run_bounded


class TestScheduledLoop:

    @pytest.mark.asyncio
    async def test_runs_immediately_and_repeats(self):
        calls = []

        async def tick():
            calls.append(1)

        loop = ScheduledLoop(0.01, tick, name="test")
        await loop.start()
        await asyncio.sleep(0.05)
        loop.stop()
        await loop.wait_stopped()

        assert len(calls) >= 2
        assert loop.execution_count == len(calls)
        assert not loop.is_running
        assert not loop.interval_active

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        async def tick():
            pass

        loop = ScheduledLoop(10, tick, name="test")
        await loop.start()
        task = loop._task
        await loop.start()

        assert loop._task is task
        loop.stop()
        await loop.wait_stopped()

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_cycle_finish(self):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_cycle():
            started.set()
            await release.wait()
            finished.append(True)

        loop = ScheduledLoop(10, slow_cycle, name="slow")
        await loop.start()
        await started.wait()

        loop.stop()
        assert not loop.is_running
        assert loop.interval_active

        release.set()
        await loop.wait_stopped()

        assert finished == [True]
        assert loop.execution_count == 1

    @pytest.mark.asyncio
    async def test_callback_errors_are_counted_not_raised(self):
        async def broken():
            raise RuntimeError("boom")

        loop = ScheduledLoop(0.01, broken, name="broken")
        await loop.start()
        await asyncio.sleep(0.03)
        loop.stop()
        await loop.wait_stopped()

        stats = loop.get_stats()
        assert stats["error_count"] >= 1
        assert stats["execution_count"] == 0


class TestRunBounded:

    @pytest.mark.asyncio
    async def test_respects_concurrency_limit(self):
        in_flight = 0
        peak = 0

        async def work(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item * 2

        results = await run_bounded(range(10), work, max_concurrency=3)

        assert peak <= 3
        assert [r for _, r in results] == [i * 2 for i in range(10)]

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        async def work(item):
            if item == 2:
                raise ValueError("bad item")
            return item

        results = await run_bounded([1, 2, 3], work, max_concurrency=2)

        assert results[0] == (1, 1)
        assert isinstance(results[1][1], ValueError)
        assert results[2] == (3, 3)
