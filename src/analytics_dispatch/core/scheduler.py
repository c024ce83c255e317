"""
Background scheduler for deferred and asynchronous deliveries.

Features:
- Immediate background execution
- Delayed execution (maintenance window deferral)
- Retry logic with configurable backoff
- Drain and cancellation on shutdown
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from ..config import SchedulerSettings
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

Task = Callable[[], Awaitable[None]]


class Scheduler(Protocol):
    """Executes delivery work outside the caller's await."""

    def run_now(self, task: Task, events_count: int = 0) -> None:
        ...

    def run_after(self, delay_seconds: float, task: Task, events_count: int = 0) -> None:
        ...


@dataclass
class _Job:
    events_count: int
    delay_seconds: float
    started: bool = False

    @property
    def in_flight(self) -> bool:
        return self.started or self.delay_seconds == 0


class AsyncioScheduler:
    """
    Runs delivery tasks on the event loop.

    Failed tasks are retried up to ``max_retries`` times, waiting the
    configured backoff between attempts. Once retries are exhausted the
    failure is logged and the batch is dropped.
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or SchedulerSettings()
        self.metrics = metrics
        self._sleep = sleep
        self._jobs: Dict["asyncio.Task[None]", _Job] = {}
        self._running = False

        logger.info(
            "Scheduler initialized",
            max_retries=self.settings.max_retries,
            backoff_seconds=self.settings.backoff_seconds,
        )

    async def start(self) -> None:
        """Start accepting work."""
        self._running = True
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """
        Finish in-flight work, then stop.

        Work that is already running, or was handed over with ``run_now``,
        gets up to ``shutdown_timeout_seconds`` to complete. Anything left
        after that, including deliveries still waiting out a delay, is
        cancelled and each dropped batch is logged as an error.
        """
        self._running = False

        in_flight = [task for task, job in self._jobs.items() if job.in_flight]
        if in_flight:
            logger.info(
                "Waiting for in-flight deliveries",
                tasks=len(in_flight),
                timeout_seconds=self.settings.shutdown_timeout_seconds,
            )
            await asyncio.wait(in_flight, timeout=self.settings.shutdown_timeout_seconds)

        remaining = [(task, job) for task, job in self._jobs.items() if not task.done()]
        for task, job in remaining:
            task.cancel()
            logger.error(
                "Delivery dropped on shutdown",
                events_count=job.events_count,
                delay_seconds=job.delay_seconds,
                started=job.started,
            )
            if self.metrics:
                self.metrics.record_delivery_failure("ShutdownCancelled")
        if remaining:
            await asyncio.gather(*(task for task, _ in remaining), return_exceptions=True)

        logger.info(
            "Scheduler stopped",
            completed_tasks=sum(1 for task in in_flight if not task.cancelled()),
            dropped_tasks=len(remaining),
        )

    async def drain(self) -> None:
        """Wait until all scheduled work, including retries, has finished."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    def is_healthy(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._jobs)

    def run_now(self, task: Task, events_count: int = 0) -> None:
        self._spawn(task, 0.0, events_count)

    def run_after(self, delay_seconds: float, task: Task, events_count: int = 0) -> None:
        self._spawn(task, max(0.0, delay_seconds), events_count)

    def _spawn(self, task: Task, delay_seconds: float, events_count: int) -> None:
        if not self._running:
            logger.warning("Scheduler not started, running work anyway")

        job = _Job(events_count=events_count, delay_seconds=delay_seconds)
        runner = asyncio.create_task(self._run(task, job))
        self._jobs[runner] = job
        runner.add_done_callback(self._forget)

        logger.debug("Work scheduled", delay_seconds=delay_seconds, pending=len(self._jobs))

    def _forget(self, runner: "asyncio.Task[None]") -> None:
        self._jobs.pop(runner, None)

    async def _run(self, task: Task, job: _Job) -> None:
        if job.delay_seconds > 0:
            await self._sleep(job.delay_seconds)
        job.started = True

        backoff: List[int] = self.settings.backoff_seconds
        for attempt in range(self.settings.max_retries + 1):
            try:
                await task()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self.metrics:
                    self.metrics.record_delivery_failure(type(e).__name__)

                if attempt >= self.settings.max_retries:
                    logger.error(
                        "Delivery failed, retries exhausted",
                        attempts=attempt + 1,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return

                wait = backoff[min(attempt, len(backoff) - 1)] if backoff else 0
                logger.warning(
                    "Delivery attempt failed",
                    attempt=attempt + 1,
                    max_retries=self.settings.max_retries,
                    retry_in_seconds=wait,
                    error=str(e),
                )
                await self._sleep(wait)
