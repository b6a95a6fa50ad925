import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

log = logging.getLogger("golazo.scheduler")


class JobScheduler:
    """APScheduler wrapper for the monitoring cycle and delayed alert delivery."""

    def __init__(self, timezone_name: str = "UTC"):
        self.scheduler: Optional[BackgroundScheduler] = None
        self.timezone_name = timezone_name
        self.started = False

    def start(self):
        """Start the scheduler."""
        if self.started:
            return
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(timezone=self.timezone_name)
        self.scheduler.start()
        self.started = True
        log.info("[SCHEDULER] Scheduler started")

    def _ensure(self) -> BackgroundScheduler:
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(timezone=self.timezone_name)
        return self.scheduler

    def add_interval_job(self, func: Callable, seconds: float, job_id: str):
        """Run ``func`` every ``seconds``; one instance at a time, missed runs coalesced."""
        self._ensure().add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        log.info("[SCHEDULER] Job %s every %ss", job_id, seconds)

    def add_delayed_job(self, func: Callable, delay_sec: float, job_id: str, args: Sequence = ()):
        """Run ``func(*args)`` once after ``delay_sec``."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_sec)
        self._ensure().add_job(
            func,
            "date",
            run_date=run_date,
            id=job_id,
            args=list(args),
            misfire_grace_time=60,
            replace_existing=True,
        )
        log.debug("[SCHEDULER] Job %s at %s", job_id, run_date.isoformat())

    def cancel(self, job_id: str) -> bool:
        """Remove a job; False if it already ran or never existed."""
        if self.scheduler is None:
            return False
        try:
            self.scheduler.remove_job(job_id)
            return True
        except JobLookupError:
            return False

    def next_run_time(self, job_id: str) -> Optional[datetime]:
        """Next fire time of a job, or None."""
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None

    def shutdown(self):
        """Shutdown the scheduler."""
        if self.scheduler and self.started:
            try:
                self.scheduler.shutdown(wait=False)
                log.info("[SCHEDULER] Scheduler shut down")
            except Exception as e:
                log.warning("[SCHEDULER] Error shutting down scheduler: %s", e)
        self.started = False

    def is_running(self) -> bool:
        return self.started and self.scheduler is not None
