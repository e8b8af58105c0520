"""
Autopilot scheduler for the weekly publishing rhythm.

    Mon/Thu  content pipeline
    Tue/Fri  SEO pipeline
    Wed      podcast pipeline
    Interval data auto-healer
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..errors import PipelineError
from ..storage.models import PipelineKind, TriggerType
from .healer import DataAutoHealer, HealReport
from .orchestrator import PipelineOrchestrator

logger = structlog.get_logger()

WEEKLY_SCHEDULE = {
    PipelineKind.CONTENT: "mon,thu",
    PipelineKind.SEO: "tue,fri",
    PipelineKind.PODCAST: "wed",
}


class PipelineScheduler:
    """
    Scheduler for the pipeline autopilot.

    Usage:
        scheduler = PipelineScheduler(orchestrator, healer)

        # Start automated scheduling
        await scheduler.start()

        # Or run manually
        await scheduler.run_pipeline(PipelineKind.SEO)
        await scheduler.run_healer()
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        healer: DataAutoHealer,
        run_hour: int = 9,
        run_minute: int = 0,
        healer_interval_hours: int = 24,
        timezone: str = "Asia/Jerusalem",
    ):
        self.orchestrator = orchestrator
        self.healer = healer
        self.run_hour = run_hour
        self.run_minute = run_minute
        self.healer_interval = healer_interval_hours
        self.timezone = timezone

        self.scheduler = AsyncIOScheduler(timezone=timezone)

        self._on_run_complete: Optional[Callable[[PipelineKind, str], Awaitable[None]]] = None
        self._on_error: Optional[Callable[[str, Exception], Awaitable[None]]] = None

    def on_run_complete(self, callback: Callable[[PipelineKind, str], Awaitable[None]]):
        """Set callback for when a scheduled run stops (completed, suspended or failed)."""
        self._on_run_complete = callback

    def on_error(self, callback: Callable[[str, Exception], Awaitable[None]]):
        """Set callback for errors."""
        self._on_error = callback

    async def start(self):
        """Start the scheduler with the weekly pipelines and the healer."""
        for kind, days in WEEKLY_SCHEDULE.items():
            self.scheduler.add_job(
                self._run_pipeline_job,
                CronTrigger(
                    day_of_week=days,
                    hour=self.run_hour,
                    minute=self.run_minute,
                    timezone=self.timezone,
                ),
                args=[kind],
                id=f"{kind.value}_pipeline",
                name=f"{kind.value.title()} Pipeline ({days})",
                replace_existing=True,
            )

        self.scheduler.add_job(
            self._run_healer_job,
            IntervalTrigger(hours=self.healer_interval),
            id="data_auto_heal",
            name="Data Auto-Healer",
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started: pipelines at {self.run_hour:02d}:{self.run_minute:02d} {self.timezone}, "
            f"healer every {self.healer_interval}h"
        )

    def stop(self):
        """Stop the scheduler."""
        self.scheduler.shutdown()
        logger.info("Scheduler stopped")

    async def run_pipeline(self, kind: PipelineKind) -> Optional[str]:
        """Manually trigger a pipeline as if the schedule fired."""
        return await self._run_pipeline_job(kind)

    async def run_healer(self) -> Optional[HealReport]:
        """Manually trigger the healer."""
        return await self._run_healer_job()

    async def _run_pipeline_job(self, kind: PipelineKind) -> Optional[str]:
        """Internal: Run one pipeline with error handling."""
        logger.info(f"Starting scheduled {kind.value} pipeline...")
        try:
            run_id = await self.orchestrator.run(kind, TriggerType.CRON)
            logger.info(f"Scheduled {kind.value} pipeline stopped: {run_id}")

            if self._on_run_complete:
                await self._on_run_complete(kind, run_id)

            return run_id

        except PipelineError as e:
            logger.error(f"Scheduled {kind.value} pipeline failed: {e}")
            if self._on_error:
                await self._on_error(f"{kind.value}_pipeline", e)
            return None

    async def _run_healer_job(self) -> Optional[HealReport]:
        """Internal: Run the healer with error handling."""
        logger.info("Starting scheduled data auto-heal...")
        try:
            report = await self.healer.heal_all()
            logger.info(f"Auto-heal complete: {report.summary}")
            return report

        except PipelineError as e:
            logger.error(f"Auto-heal failed: {e}")
            if self._on_error:
                await self._on_error("data_auto_heal", e)
            return None

    def get_next_runs(self) -> dict:
        """Get next scheduled run times."""
        jobs = {}
        for job in self.scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
        return jobs


async def run_scheduler_forever(scheduler: PipelineScheduler):
    """Run the scheduler until cancelled."""
    await scheduler.start()

    try:
        while True:
            await asyncio.sleep(60)
    finally:
        scheduler.stop()
