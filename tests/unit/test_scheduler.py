"""Unit tests for the background job scheduler."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from antistatic.scheduler import scheduler as scheduler_module
from antistatic.scheduler.scheduler import INSIGHTS_JOB_ID, PUBLISH_JOB_ID, Scheduler


@pytest.fixture
def scheduler(fake_supabase):
    return Scheduler(fake_supabase)


class TestJobExecution:
    def test_job_ids(self, scheduler):
        assert scheduler.job_ids == [PUBLISH_JOB_ID, INSIGHTS_JOB_ID]

    @pytest.mark.asyncio
    async def test_run_now_returns_job_result(self, scheduler):
        scheduler._jobs[PUBLISH_JOB_ID] = AsyncMock(return_value={"due": 0, "published": 0, "failed": 0})

        result = await scheduler.run_now(PUBLISH_JOB_ID)

        assert result == {"due": 0, "published": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(ValueError, match="Unknown job"):
            await scheduler.run_now("send_newsletter")

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, scheduler):
        scheduler._jobs[INSIGHTS_JOB_ID] = AsyncMock(side_effect=RuntimeError("apify down"))

        assert await scheduler.run_now(INSIGHTS_JOB_ID) is None

    @pytest.mark.asyncio
    async def test_timeout_is_swallowed(self, scheduler, monkeypatch):
        monkeypatch.setattr(
            scheduler_module, "get_settings", lambda: SimpleNamespace(job_timeout_seconds=0.01)
        )

        async def slow_job():
            await asyncio.sleep(1)

        scheduler._jobs[PUBLISH_JOB_ID] = slow_job

        assert await scheduler.run_now(PUBLISH_JOB_ID) is None

    @pytest.mark.asyncio
    async def test_publish_job_calls_publisher(self, scheduler, monkeypatch):
        publisher = AsyncMock(return_value={"due": 1, "published": 1, "failed": 0})
        monkeypatch.setattr(scheduler_module, "publish_due_posts", publisher)

        await scheduler.run_now(PUBLISH_JOB_ID)

        publisher.assert_awaited_once_with(scheduler._supabase)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_registers_jobs_and_stop(self, scheduler):
        await scheduler.start()
        try:
            assert scheduler.is_running
            registered = {job.id for job in scheduler._scheduler.get_jobs()}
            assert registered == {PUBLISH_JOB_ID, INSIGHTS_JOB_ID}

            await scheduler.start()
            assert scheduler.is_running
        finally:
            await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler._scheduler is None

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, scheduler):
        await scheduler.stop()
        assert not scheduler.is_running
