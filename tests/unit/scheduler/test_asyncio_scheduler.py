"""
Tests for the asyncio background scheduler.

Sleeping is replaced by a recorder so retry backoff is observable without
waiting.
"""

import asyncio
from typing import List

import pytest
from prometheus_client import CollectorRegistry
from structlog.testing import capture_logs

from analytics_dispatch.config import SchedulerSettings
from analytics_dispatch.core.metrics import MetricsCollector
from analytics_dispatch.core.scheduler import AsyncioScheduler


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyTask:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0

    async def __call__(self) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"attempt {self.attempts} failed")


class TestAsyncioScheduler:
    """Test immediate, delayed and retried execution."""

    @pytest.mark.asyncio
    async def test_run_now_executes_task(self) -> None:
        sleep = SleepRecorder()
        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0), sleep=sleep)
        await scheduler.start()
        task = FlakyTask(failures=0)

        scheduler.run_now(task)
        await scheduler.drain()

        assert task.attempts == 1
        assert sleep.delays == []
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_run_after_waits_before_executing(self) -> None:
        sleep = SleepRecorder()
        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0), sleep=sleep)
        await scheduler.start()
        task = FlakyTask(failures=0)

        scheduler.run_after(14400, task)
        await scheduler.drain()

        assert sleep.delays == [14400]
        assert task.attempts == 1

    @pytest.mark.asyncio
    async def test_negative_delay_runs_immediately(self) -> None:
        sleep = SleepRecorder()
        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0), sleep=sleep)
        await scheduler.start()

        scheduler.run_after(-5, FlakyTask(failures=0))
        await scheduler.drain()

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_failed_task_retried_with_backoff(self) -> None:
        sleep = SleepRecorder()
        scheduler = AsyncioScheduler(
            SchedulerSettings(max_retries=3, backoff_seconds=[5, 10]),
            sleep=sleep,
        )
        await scheduler.start()
        task = FlakyTask(failures=2)

        scheduler.run_now(task)
        await scheduler.drain()

        assert task.attempts == 3
        assert sleep.delays == [5, 10]

    @pytest.mark.asyncio
    async def test_retries_exhausted_logs_error(self) -> None:
        sleep = SleepRecorder()
        metrics = MetricsCollector(CollectorRegistry())
        scheduler = AsyncioScheduler(
            SchedulerSettings(max_retries=2, backoff_seconds=[1]),
            metrics=metrics,
            sleep=sleep,
        )
        await scheduler.start()
        task = FlakyTask(failures=10)

        with capture_logs() as logs:
            scheduler.run_now(task)
            await scheduler.drain()

        assert task.attempts == 3
        assert sleep.delays == [1, 1]
        errors = [log for log in logs if log["log_level"] == "error"]
        assert len(errors) == 1
        assert errors[0]["error_type"] == "ConnectionError"
        assert metrics.registry.get_sample_value(
            "analytics_delivery_failures_total", {"error_type": "ConnectionError"}
        ) == 3

    @pytest.mark.asyncio
    async def test_stop_drops_delayed_work_with_error_log(self) -> None:
        never = asyncio.Event()

        async def block(seconds: float) -> None:
            await never.wait()

        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0), sleep=block)
        await scheduler.start()
        task = FlakyTask(failures=0)

        scheduler.run_after(60, task, events_count=4)
        await asyncio.sleep(0)
        assert scheduler.pending == 1

        with capture_logs() as logs:
            await scheduler.stop()
        await asyncio.sleep(0)

        assert task.attempts == 0
        dropped = [log for log in logs if log["event"] == "Delivery dropped on shutdown"]
        assert len(dropped) == 1
        assert dropped[0]["log_level"] == "error"
        assert dropped[0]["events_count"] == 4
        assert scheduler.pending == 0
        assert not scheduler.is_healthy()

    @pytest.mark.asyncio
    async def test_health_follows_lifecycle(self) -> None:
        scheduler = AsyncioScheduler(SchedulerSettings())

        assert not scheduler.is_healthy()
        await scheduler.start()
        assert scheduler.is_healthy()
        await scheduler.stop()
        assert not scheduler.is_healthy()


class TestSchedulerShutdown:
    """Test that stopping finishes handed-over work before cancelling."""

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_delivery(self) -> None:
        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0))
        await scheduler.start()
        delivered: List[str] = []

        async def deliver() -> None:
            for _ in range(3):
                await asyncio.sleep(0)
            delivered.append("batch")

        scheduler.run_now(deliver, events_count=2)

        with capture_logs() as logs:
            await scheduler.stop()

        assert delivered == ["batch"]
        assert scheduler.pending == 0
        assert not [log for log in logs if log["log_level"] == "error"]

    @pytest.mark.asyncio
    async def test_stop_waits_for_elapsed_deferred_delivery(self) -> None:
        scheduler = AsyncioScheduler(SchedulerSettings(max_retries=0), sleep=SleepRecorder())
        await scheduler.start()
        release = asyncio.Event()
        delivered: List[str] = []

        async def deliver() -> None:
            await release.wait()
            delivered.append("deferred")

        scheduler.run_after(30, deliver, events_count=1)
        await asyncio.sleep(0)
        asyncio.get_running_loop().call_later(0.01, release.set)

        await scheduler.stop()

        assert delivered == ["deferred"]

    @pytest.mark.asyncio
    async def test_stop_timeout_drops_stuck_delivery(self) -> None:
        scheduler = AsyncioScheduler(
            SchedulerSettings(max_retries=0, shutdown_timeout_seconds=0.01)
        )
        await scheduler.start()
        never = asyncio.Event()

        async def deliver() -> None:
            await never.wait()

        scheduler.run_now(deliver, events_count=3)

        with capture_logs() as logs:
            await scheduler.stop()

        assert scheduler.pending == 0
        errors = [log for log in logs if log["log_level"] == "error"]
        assert len(errors) == 1
        assert errors[0]["event"] == "Delivery dropped on shutdown"
        assert errors[0]["events_count"] == 3
        assert errors[0]["started"] is True
