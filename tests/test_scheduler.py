"""Tests for the autopilot scheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pressline.errors import StageExecutionError
from pressline.pipeline import HealReport, PipelineScheduler
from pressline.storage.models import PipelineKind, TriggerType


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.run = AsyncMock(return_value="run_abc")
    return mock


@pytest.fixture
def healer():
    mock = MagicMock()
    mock.heal_all = AsyncMock(return_value=HealReport(scanned=3))
    return mock


class TestPipelineScheduler:

    async def test_start_registers_weekly_jobs(self, orchestrator, healer):
        scheduler = PipelineScheduler(orchestrator, healer, run_hour=9, healer_interval_hours=6)
        await scheduler.start()
        try:
            jobs = scheduler.get_next_runs()
        finally:
            scheduler.stop()

        assert set(jobs) == {"content_pipeline", "seo_pipeline", "podcast_pipeline", "data_auto_heal"}
        assert jobs["content_pipeline"]["name"] == "Content Pipeline (mon,thu)"
        assert all(job["next_run"] for job in jobs.values())

    async def test_scheduled_run_is_a_cron_trigger(self, orchestrator, healer):
        scheduler = PipelineScheduler(orchestrator, healer)
        done = AsyncMock()
        scheduler.on_run_complete(done)

        run_id = await scheduler.run_pipeline(PipelineKind.SEO)

        assert run_id == "run_abc"
        orchestrator.run.assert_awaited_once_with(PipelineKind.SEO, TriggerType.CRON)
        done.assert_awaited_once_with(PipelineKind.SEO, "run_abc")

    async def test_pipeline_error_is_reported_not_raised(self, orchestrator, healer):
        error = StageExecutionError("topic-selection", "no eligible topics available")
        orchestrator.run.side_effect = error
        scheduler = PipelineScheduler(orchestrator, healer)
        on_error = AsyncMock()
        scheduler.on_error(on_error)

        assert await scheduler.run_pipeline(PipelineKind.CONTENT) is None
        on_error.assert_awaited_once_with("content_pipeline", error)

    async def test_run_healer(self, orchestrator, healer):
        scheduler = PipelineScheduler(orchestrator, healer)

        report = await scheduler.run_healer()

        assert report.scanned == 3
        healer.heal_all.assert_awaited_once_with()
