"""APScheduler wrapper for periodic incremental refresh."""

from __future__ import annotations

from typing import Callable

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

REFRESH_JOB_ID = "refresh::all"


class APSchedulerAdapter:
    """Manage the background refresh job."""

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = logger or structlog.get_logger("feeding_tube.scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_refresh(self, callback: Callable[[], object], minutes: int) -> None:
        if minutes < 1:
            raise ValueError("Refresh interval must be at least one minute")
        self.scheduler.add_job(
            callback,
            trigger=IntervalTrigger(minutes=minutes),
            id=REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job=REFRESH_JOB_ID, minutes=minutes)

    def cancel_refresh(self) -> None:
        try:
            self.scheduler.remove_job(REFRESH_JOB_ID)
        except JobLookupError:
            self.logger.warning("job_remove_failed", job=REFRESH_JOB_ID)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "REFRESH_JOB_ID"]
