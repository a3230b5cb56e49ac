"""APScheduler-based crawl scheduler.

Runs the ingestion pipeline on a fixed interval in the background. The job
is registered with max_instances=1 so a slow cycle is never overlapped by
the next tick.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.core.exceptions import AlgumonCrawlerError, CycleInProgressError
from app.services.ingestion_pipeline import IngestionPipeline

logger = structlog.get_logger(__name__)

CRAWL_JOB_ID = "crawl_algumon"


class CycleScheduler:
    """Manages the periodic crawl job using APScheduler.

    This scheduler:
    - Starts and stops the background crawl job
    - Schedules a first cycle shortly after startup
    - Logs cycle failures without stopping the scheduler
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        interval_minutes: Optional[int] = None,
        initial_delay_seconds: Optional[int] = None,
    ):
        """Initialize crawl scheduler.

        Args:
            pipeline: Pipeline whose run_one_cycle() each tick calls
            interval_minutes: Minutes between cycles
            initial_delay_seconds: Delay before the first cycle
        """
        self.pipeline = pipeline
        self.interval_minutes = interval_minutes or settings.CRAWL_INTERVAL_MINUTES
        self.initial_delay_seconds = (
            settings.INITIAL_CRAWL_DELAY_SECONDS if initial_delay_seconds is None else initial_delay_seconds
        )
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="cycle_scheduler")
        self._job: Optional[Job] = None
        # AsyncIOScheduler.shutdown() defers its state change to the event loop
        self._started = False

    def start(self) -> Optional[Job]:
        """Start the scheduler and register the crawl job.

        Returns:
            The crawl job, or None if the scheduler was already running
        """
        if self._started:
            self.logger.warning("scheduler_already_running")
            return None

        self.scheduler.start()
        self._started = True
        self._job = self.add_crawl_job()
        self.logger.info(
            "scheduler_started",
            interval_minutes=self.interval_minutes,
            initial_delay_seconds=self.initial_delay_seconds,
        )
        return self._job

    def stop(self) -> None:
        """Stop the scheduler without waiting for a running cycle."""
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            self._job = None
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def add_crawl_job(self) -> Job:
        """Register the interval job; the first run fires after the initial delay."""
        first_run = datetime.now(timezone.utc) + timedelta(seconds=self.initial_delay_seconds)
        trigger = IntervalTrigger(
            minutes=self.interval_minutes,
            start_date=first_run,
            timezone="UTC",
        )

        job = self.scheduler.add_job(
            func=self._run_cycle_wrapper,
            trigger=trigger,
            id=CRAWL_JOB_ID,
            name="Crawl Algumon",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
        )

        self.logger.info(
            "crawl_job_added",
            interval_minutes=self.interval_minutes,
            next_run=job.next_run_time.isoformat() if job.next_run_time else None,
        )
        return job

    async def _run_cycle_wrapper(self) -> None:
        """Wrapper for run_one_cycle that handles exceptions.

        This is the function that APScheduler calls. It catches all
        exceptions to prevent a failed cycle from stopping the scheduler.
        """
        try:
            await self.pipeline.run_one_cycle()
        except CycleInProgressError:
            self.logger.warning("crawl_job_skipped", reason="cycle_in_progress")
        except AlgumonCrawlerError as e:
            # Already recorded in the pipeline's counters
            self.logger.error("crawl_job_failed", error=e.message)
        except Exception as e:
            self.logger.error("crawl_job_failed", error=str(e), exc_info=True)

    def get_job_status(self) -> dict:
        """Get status of the crawl job."""
        job = self.scheduler.get_job(CRAWL_JOB_ID) if self._job is not None else None
        if job is None:
            return {}
        return {
            "job_id": job.id,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }

    def is_running(self) -> bool:
        return self._started
