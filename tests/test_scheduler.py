"""
Tests for cron scheduling of passes.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from rental_maker.runner import PassReport
from rental_maker.scheduler import PASS_JOB_ID, PassScheduler


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.run_pass = AsyncMock(return_value=PassReport(pass_id="pass_1", started_at=0.0))
    return runner


class TestPassScheduler:
    @pytest.mark.asyncio
    async def test_run_once_keeps_last_report(self, runner):
        scheduler = PassScheduler(runner, "0 */6 * * *")

        report = await scheduler.run_once()

        assert scheduler.last_report is report
        runner.run_pass.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_never_overlaps(self, runner):
        scheduler = PassScheduler(runner, "0 */6 * * *")
        scheduler.start()
        try:
            job = scheduler._scheduler.get_job(PASS_JOB_ID)
            assert job.max_instances == 1
            assert job.coalesce is True
            assert "hour='*/6'" in str(job.trigger)
        finally:
            scheduler.shutdown()
