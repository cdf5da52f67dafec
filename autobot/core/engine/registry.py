"""SchedulerRegistry — owns the job list and one EngineRunner per job."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from autobot.core.engine.runner import EngineRunner
from autobot.core.engine.types import JobDefinition

if TYPE_CHECKING:
    from autobot.core.config.schema import Config
    from autobot.store import DocumentStore

JobBuilder = Callable[["Config", "DocumentStore"], JobDefinition]


class SchedulerRegistry:
    """Registered jobs and their runners.

    Mutated only from the event loop that calls start()/stop(). Every
    job is built and launched independently: one broken job is logged
    and the rest still start.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._jobs: dict[str, JobDefinition] = {}
        self._runners: dict[str, EngineRunner] = {}
        self._scheduler = scheduler or AsyncIOScheduler()

    @property
    def jobs(self) -> list[JobDefinition]:
        return list(self._jobs.values())

    @property
    def runners(self) -> dict[str, EngineRunner]:
        return dict(self._runners)

    def register(self, job: JobDefinition) -> None:
        if job.id in self._jobs:
            raise ValueError(f"Job already registered: {job.id}")
        self._jobs[job.id] = job

    def load(
        self,
        builders: Mapping[str, JobBuilder],
        config: Config,
        store: DocumentStore,
    ) -> None:
        """Build and register every job enabled in ``config.plugins``."""
        for job_id, build in builders.items():
            if not config.is_enabled(job_id):
                logger.debug(f"Job {job_id} disabled")
                continue
            try:
                self.register(build(config, store))
            except Exception as e:
                logger.error(f"{job_id}: engine failed to initialize: {e}")

    def start(self) -> None:
        """Launch one EngineRunner per registered job."""
        self._scheduler.start()
        for job in self._jobs.values():
            runner = EngineRunner(job, scheduler=self._scheduler)
            try:
                runner.start()
            except Exception as e:
                logger.error(f"{job.id}:{job.label}: engine failed to initialize schedule: {e}")
                continue
            self._runners[job.id] = runner
        logger.info(f"SchedulerRegistry started with {len(self._runners)}/{len(self._jobs)} jobs")

    async def stop(self) -> None:
        """Request stop on every runner, then wait for frequency loops."""
        for runner in self._runners.values():
            runner.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        await asyncio.gather(
            *(runner.wait() for runner in self._runners.values()),
            return_exceptions=True,
        )
        self._runners.clear()
        logger.info("SchedulerRegistry stopped")

    @property
    def active_count(self) -> int:
        return sum(1 for r in self._runners.values() if r.running)

    def status(self) -> list[dict[str, Any]]:
        """Per-job status for the admin surface."""
        out = []
        for job in self._jobs.values():
            runner = self._runners.get(job.id)
            last = runner.last_invocation if runner else None
            out.append({
                "id": job.id,
                "schedule": job.label,
                "running": bool(runner and runner.running),
                "invocations": runner.invocations if runner else 0,
                "last_success": last.success if last else None,
                "last_error": last.error if last else None,
                "last_started_at": last.started_at.isoformat() if last else None,
            })
        return out
