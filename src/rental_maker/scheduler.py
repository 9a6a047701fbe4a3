"""Cron scheduling of reconciliation passes."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .runner import PassReport, RentalRunner

logger = logging.getLogger(__name__)

PASS_JOB_ID = "rental_pass"


class PassScheduler:
    """Runs ``runner.run_pass`` on a cron schedule, never two at once."""

    def __init__(self, runner: RentalRunner, cron: str, timezone: str = "UTC"):
        self.runner = runner
        self.cron = cron
        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                # A pass still running when the next fires makes that run skip
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60 * 5,
            },
            timezone=timezone,
        )
        self.last_report: Optional[PassReport] = None

    async def run_once(self) -> PassReport:
        report = await self.runner.run_pass()
        self.last_report = report
        if report.skipped:
            logger.warning(f"Pass {report.pass_id} skipped: {report.skip_reason}")
        return report

    def start(self) -> None:
        self._scheduler.add_job(
            self.run_once,
            CronTrigger.from_crontab(self.cron),
            id=PASS_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"Scheduled passes with cron '{self.cron}'")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def serve_forever(self, run_immediately: bool = True) -> None:
        """Run one pass now, then follow the schedule until cancelled."""
        if run_immediately:
            await self.run_once()
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.shutdown()
