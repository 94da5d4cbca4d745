from unittest.mock import MagicMock

from apscheduler.triggers.cron import CronTrigger

from clubhub.jobs import scheduler as scheduler_module
from clubhub.jobs.scheduler import JobScheduler
from clubhub.utils.clock import shift_iso, utcnow

JOB_IDS = ["start_due_events", "close_finished_events", "send_completion_reminders",
           "mark_incomplete_events", "advance_recruitments"]


def test_start_registers_every_job_once(services):
    backend = MagicMock()
    jobs = JobScheduler(services, scheduler=backend)

    jobs.start()
    jobs.start()

    assert [c.kwargs["id"] for c in backend.add_job.call_args_list] == JOB_IDS
    assert all(c.kwargs["replace_existing"] for c in backend.add_job.call_args_list)
    assert all(isinstance(c.kwargs["trigger"], CronTrigger) for c in backend.add_job.call_args_list)
    backend.start.assert_called_once()

    jobs.shutdown()
    backend.shutdown.assert_called_once_with(wait=False)
    jobs.shutdown()
    backend.shutdown.assert_called_once()


def test_shutdown_before_start_is_noop(services):
    backend = MagicMock()
    JobScheduler(services, scheduler=backend).shutdown()
    backend.shutdown.assert_not_called()


def test_run_all(services, factory):
    now = utcnow()
    club = factory.club()
    factory.event(club, status="published", date_time=shift_iso(now, hours=-1))
    factory.recruitment(club, status="scheduled", start_date=shift_iso(now, hours=-1))

    results = JobScheduler(services, scheduler=MagicMock()).run_all(now)
    assert list(results) == JOB_IDS
    assert results["start_due_events"] == 1
    assert results["advance_recruitments"] == 1
    assert results["mark_incomplete_events"] == 0


def test_failing_job_does_not_stop_the_rest(services, monkeypatch):
    def broken(events, now=None):
        raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(scheduler_module, "start_due_events", broken)
    results = JobScheduler(services, scheduler=MagicMock()).run_all()
    assert results["start_due_events"] is None
    assert results["close_finished_events"] == 0


def test_scheduled_wrapper_swallows_job_errors(services):
    jobs = JobScheduler(services, scheduler=MagicMock())

    def boom():
        raise RuntimeError("boom")

    jobs._wrap("boom", boom)()
    jobs._wrap("ok", lambda: 3)()


def test_run_jobs_command(app, factory):
    factory.event(factory.club(), status="published", date_time=shift_iso(utcnow(), hours=-1))
    result = app.test_cli_runner().invoke(args=["run-jobs"])
    assert result.exit_code == 0
    assert "start_due_events: 1" in result.output
