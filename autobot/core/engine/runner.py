"""EngineRunner — drives one job on its cron or frequency schedule."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from autobot.core.engine.types import EngineInvocation, JobDefinition

# Cron firings are not throttled: a slow run may overlap the next trigger.
CRON_MAX_INSTANCES = 32


def compute_delay(period_s: float, elapsed_s: float) -> float:
    """Time to wait before the next frequency run (start-to-start pacing)."""
    return max(0.0, period_s - elapsed_s)


class EngineRunner:
    """Execute one JobDefinition repeatedly.

    Frequency jobs run in their own asyncio task: run, then wait
    ``period - elapsed``. Two invocations of the same frequency job never
    overlap. Cron jobs are handed to the shared APScheduler instance.

    Errors raised by the job are logged and never end the runner.
    """

    def __init__(
        self,
        job: JobDefinition,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.job = job
        self.period_s = job.period_s
        self.invocations = 0
        self.last_invocation: EngineInvocation | None = None
        self._scheduler = scheduler
        self._clock = clock
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._cron_registered = False

    @property
    def label(self) -> str:
        return f"{self.job.id}:{self.job.label}"

    @property
    def running(self) -> bool:
        if self._stop.is_set():
            return False
        if self._cron_registered:
            return True
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin scheduling. Raises if the schedule cannot be set up."""
        if self.job.is_cron:
            self._start_cron()
        else:
            self._task = asyncio.create_task(self._loop(), name=f"engine:{self.job.id}")
        logger.info(f"{self.label}: engine scheduled")

    def _start_cron(self) -> None:
        if self._scheduler is None:
            raise RuntimeError(f"Cron job {self.job.id} needs a scheduler")
        trigger = CronTrigger.from_crontab(self.job.cron)
        self._scheduler.add_job(
            self.invoke,
            trigger=trigger,
            id=self.job.id,
            replace_existing=True,
            coalesce=False,
            max_instances=CRON_MAX_INSTANCES,
        )
        self._cron_registered = True

    async def invoke(self) -> EngineInvocation:
        """Run the job once, logging (not raising) any failure."""
        started_at = datetime.now(timezone.utc)
        start = self._clock()
        self.invocations += 1
        error: str | None = None
        try:
            await self.job.run()
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"{self.label}: engine failed to run: {error}")
        elapsed = self._clock() - start

        invocation = EngineInvocation(
            job_id=self.job.id,
            started_at=started_at,
            elapsed_s=elapsed,
            success=error is None,
            error=error,
        )
        self.last_invocation = invocation
        logger.debug(f"{self.label}: run finished in {elapsed:.1f}s")
        return invocation

    async def _loop(self) -> None:
        while not self._stop.is_set():
            invocation = await self.invoke()
            delay = compute_delay(self.period_s, invocation.elapsed_s)
            if await self._wait(delay):
                break
        logger.info(f"{self.label}: engine loop exited")

    async def _wait(self, delay: float) -> bool:
        """Sleep ``delay`` seconds. Returns True when stop was requested."""
        if delay <= 0:
            return self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def stop(self) -> None:
        """Request stop. An in-flight invocation is allowed to finish."""
        self._stop.set()
        if self._cron_registered and self._scheduler is not None:
            try:
                self._scheduler.remove_job(self.job.id)
            except JobLookupError:
                logger.debug(f"{self.label}: cron job already removed")
            self._cron_registered = False

    async def wait(self) -> None:
        """Wait for the frequency loop to exit."""
        if self._task is not None:
            await self._task
