"""Scheduling service for periodic pipe runs"""

from typing import Callable, Dict, List, Optional
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger
import structlog
from ..common.config import settings
from ..common.exceptions import ConnectorError

logger = structlog.get_logger(__name__)


class PipeScheduler:
    """
    Scheduler for managing periodic pipe runs.

    Uses `APScheduler` to trigger pipe runs either on a fixed interval or via cron expressions.
    A failing run is logged and the schedule stays in place.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.jobs: Dict[str, str] = {}  # Map of pipe_id -> apscheduler job_id
        self.logger = logger
        self._running = False

    def start(self) -> None:
        """Start the async scheduler if not already running."""
        if not self._running:
            self.scheduler.start()
            self._running = True
            self.logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler and all active jobs."""
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            self.jobs.clear()
            self.logger.info("Scheduler stopped")

    def schedule_pipe(
        self,
        pipe_id: str,
        run_func: Callable,
        interval_seconds: Optional[int] = None,
        cron_expression: Optional[str] = None
    ) -> None:
        """
        Schedule periodic runs of a pipe.

        Args:
            pipe_id: Pipe to run.
            run_func: Async callable that performs one pipe run.
            interval_seconds: Run frequency in seconds (default: settings.default_polling_interval).
            cron_expression: Optional cron-style string (e.g., "0 * * * *") for complex schedules.

        Raises:
            ConnectorError: If the cron expression is invalid.
        """
        if pipe_id in self.jobs:
            self.unschedule_pipe(pipe_id)

        interval = interval_seconds or settings.default_polling_interval

        if cron_expression:
            try:
                trigger = CronTrigger.from_crontab(cron_expression)
            except ValueError as e:
                raise ConnectorError(f"Invalid cron expression {cron_expression!r}: {e}")
        else:
            trigger = IntervalTrigger(seconds=interval)

        async def guarded_run():
            try:
                await run_func()
            except Exception as e:
                self.logger.error("Scheduled pipe run failed", pipe_id=pipe_id, error=str(e))

        job = self.scheduler.add_job(
            func=guarded_run,
            trigger=trigger,
            id=f"pipe_{pipe_id}",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=60
        )

        self.jobs[pipe_id] = job.id
        self.logger.info(
            "Pipe scheduled",
            pipe_id=pipe_id,
            interval=None if cron_expression else interval,
            cron=cron_expression
        )

    def unschedule_pipe(self, pipe_id: str) -> bool:
        """Remove a pipe from the schedule"""
        job_id = self.jobs.pop(pipe_id, None)
        if job_id is None:
            return False
        try:
            self.scheduler.remove_job(job_id)
        except Exception as e:
            self.logger.error("Failed to unschedule pipe", pipe_id=pipe_id, error=str(e))
            return False
        self.logger.info("Pipe unscheduled", pipe_id=pipe_id)
        return True

    def get_next_run_time(self, pipe_id: str) -> Optional[datetime]:
        """Get the next scheduled run time for a pipe"""
        if pipe_id not in self.jobs:
            return None

        job = self.scheduler.get_job(self.jobs[pipe_id])
        return getattr(job, "next_run_time", None) if job else None

    def list_scheduled_pipes(self) -> List[str]:
        """List all scheduled pipe IDs"""
        return list(self.jobs.keys())

    async def trigger_now(self, pipe_id: str, run_func: Callable):
        """Run a pipe immediately, outside its schedule"""
        self.logger.info("Manual trigger requested", pipe_id=pipe_id)
        try:
            return await run_func()
        except Exception as e:
            self.logger.error("Manual trigger failed", pipe_id=pipe_id, error=str(e))
            raise ConnectorError(f"Manual trigger failed: {e}")
