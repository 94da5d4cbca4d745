# ================================================================================
# JOB SCHEDULER
# ================================================================================
# APScheduler wrapper that registers the event and recruitment status jobs.
#
#   start_due_events          every hour at :00
#   close_finished_events     every hour at :30
#   send_completion_reminders daily at 09:00
#   mark_incomplete_events    daily at 10:00
#   advance_recruitments      every 5 minutes
#
# All triggers run in UTC.
# ================================================================================

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from clubhub.jobs.event_status import (
    close_finished_events, mark_incomplete_events, send_completion_reminders, start_due_events
)
from clubhub.jobs.recruitment_status import advance_recruitments
from clubhub.logger import get_logger
from clubhub.utils.clock import utcnow

logger = get_logger(__name__)


class JobScheduler:
    """Runs the status jobs against a Services registry."""

    def __init__(self, services, scheduler=None):
        self.services = services
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._started = False

    def jobs(self):
        """(job_id, callable(now), trigger) for every scheduled job."""
        events = self.services.events
        recruitments = self.services.recruitments
        return [
            ("start_due_events", lambda now=None: start_due_events(events, now),
             CronTrigger(minute=0, timezone="UTC")),
            ("close_finished_events", lambda now=None: close_finished_events(events, now),
             CronTrigger(minute=30, timezone="UTC")),
            ("send_completion_reminders", lambda now=None: send_completion_reminders(events, now),
             CronTrigger(hour=9, minute=0, timezone="UTC")),
            ("mark_incomplete_events", lambda now=None: mark_incomplete_events(events, now),
             CronTrigger(hour=10, minute=0, timezone="UTC")),
            ("advance_recruitments", lambda now=None: advance_recruitments(recruitments, now),
             CronTrigger(minute="*/5", timezone="UTC")),
        ]

    def _wrap(self, job_id, func):
        def run():
            try:
                changed = func()
                logger.info("Job %s finished: %d changed", job_id, changed)
            except Exception:
                logger.exception("Job %s failed", job_id)
        return run

    def start(self) -> None:
        if self._started:
            return
        for job_id, func, trigger in self.jobs():
            self._scheduler.add_job(self._wrap(job_id, func), trigger=trigger, id=job_id, replace_existing=True)
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler started with %d jobs", len(self.jobs()))

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False

    def run_all(self, now=None) -> dict:
        """Run every job once, in schedule order. A failing job is logged and reported as None."""
        now = now or utcnow()
        results = {}
        for job_id, func, _ in self.jobs():
            try:
                results[job_id] = func(now)
            except Exception:
                logger.exception("Job %s failed", job_id)
                results[job_id] = None
        return results
