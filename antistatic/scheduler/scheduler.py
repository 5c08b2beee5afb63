"""Background jobs for Antistatic.

Two recurring jobs run inside the API process on an APScheduler
``AsyncIOScheduler``:

- ``publish_due_posts``: every ``publish_poll_minutes``, publishes scheduled
  Social Studio posts whose time has passed.
- ``refresh_competitor_insights``: daily at ``apify_refresh_hour`` (UTC),
  re-scrapes competitor data for every location with a linked Google profile.

Job state lives in the database rows the jobs work on, so nothing has to be
restored after a restart.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from supabase import Client

from antistatic.config.settings import get_settings
from antistatic.services.insights_refresh import refresh_competitor_insights
from antistatic.services.social_posts import publish_due_posts

logger = structlog.get_logger(__name__)

PUBLISH_JOB_ID = "publish_due_posts"
INSIGHTS_JOB_ID = "refresh_competitor_insights"


class Scheduler:
    """Runs the recurring jobs.

    Example:
        scheduler = Scheduler(get_supabase())
        await scheduler.start()
        ...
        await scheduler.run_now("publish_due_posts")
        await scheduler.stop()
    """

    def __init__(self, supabase: Client):
        self._supabase = supabase
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._jobs: dict[str, Callable[[], Awaitable[Any]]] = {
            PUBLISH_JOB_ID: self._publish_due_posts,
            INSIGHTS_JOB_ID: self._refresh_competitor_insights,
        }

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is currently running."""
        return self._is_running

    @property
    def job_ids(self) -> list[str]:
        return list(self._jobs)

    async def start(self) -> None:
        """Create the APScheduler instance and register both jobs."""
        if self._is_running:
            logger.warning("scheduler_already_running")
            return

        settings = get_settings()
        logger.info("scheduler_starting")

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self._execute_job,
            trigger=IntervalTrigger(minutes=settings.publish_poll_minutes),
            id=PUBLISH_JOB_ID,
            args=[PUBLISH_JOB_ID],
            name="Publish due Social Studio posts",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self._execute_job,
            trigger=CronTrigger(hour=settings.apify_refresh_hour, minute=0, timezone="UTC"),
            id=INSIGHTS_JOB_ID,
            args=[INSIGHTS_JOB_ID],
            name="Refresh competitor insights",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()

        self._is_running = True
        logger.info(
            "scheduler_started",
            publish_poll_minutes=settings.publish_poll_minutes,
            apify_refresh_hour=settings.apify_refresh_hour,
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._is_running:
            logger.warning("scheduler_not_running")
            return

        logger.info("scheduler_stopping")
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._is_running = False
        logger.info("scheduler_stopped")

    async def _publish_due_posts(self) -> Any:
        return await publish_due_posts(self._supabase)

    async def _refresh_competitor_insights(self) -> Any:
        return await refresh_competitor_insights(self._supabase)

    async def _execute_job(self, job_id: str) -> Optional[Any]:
        """
        Run one job with timeout protection.

        Failures are logged and swallowed; the next tick retries.
        """
        timeout_seconds = get_settings().job_timeout_seconds
        logger.info("job_execution_start", job_id=job_id, timeout_seconds=timeout_seconds)

        try:
            async with asyncio.timeout(timeout_seconds):
                result = await self._jobs[job_id]()
        except asyncio.TimeoutError:
            logger.error("job_execution_timeout", job_id=job_id, timeout_seconds=timeout_seconds)
            return None
        except Exception as e:
            logger.error(
                "job_execution_failed",
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info("job_execution_complete", job_id=job_id)
        return result

    async def run_now(self, job_id: str) -> Optional[Any]:
        """Trigger a job immediately, outside its schedule."""
        if job_id not in self._jobs:
            raise ValueError(f"Unknown job: {job_id}")
        return await self._execute_job(job_id)
