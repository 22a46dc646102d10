"""
Tests for SyncScheduler: job registration, non-overlap, shutdown.
"""

from caldav_gcal_sync.models import SyncResult
from caldav_gcal_sync.scheduler import SyncScheduler


class _StubSynchronizer:
    def __init__(self, result: SyncResult | None = None):
        self.result = result or SyncResult(created=1)
        self.runs = 0
        self.shutdowns = 0
        self.on_run = None

    def run(self) -> SyncResult:
        self.runs += 1
        if self.on_run is not None:
            self.on_run()
        return self.result

    def shutdown(self):
        self.shutdowns += 1


def test_daily_job_is_registered():
    scheduler = SyncScheduler(_StubSynchronizer(), daily_at="03:15")
    scheduler._register()

    (job,) = scheduler.scheduler.jobs
    assert job.unit == "days"
    assert str(job.at_time) == "03:15:00"


def test_interval_job_is_registered():
    scheduler = SyncScheduler(_StubSynchronizer(), interval_minutes=15)
    scheduler._register()

    (job,) = scheduler.scheduler.jobs
    assert job.unit == "minutes"
    assert job.interval == 15


def test_run_once_returns_result():
    synchronizer = _StubSynchronizer()
    scheduler = SyncScheduler(synchronizer)

    result = scheduler.run_once()

    assert result is synchronizer.result
    assert scheduler.last_result is result
    assert synchronizer.runs == 1


def test_overlapping_tick_is_skipped():
    synchronizer = _StubSynchronizer()
    scheduler = SyncScheduler(synchronizer)
    nested = []
    synchronizer.on_run = lambda: nested.append(scheduler.run_once())

    scheduler.run_once()

    assert nested == [None]
    assert synchronizer.runs == 1


def test_failed_run_is_reported_not_raised():
    failed = SyncResult(fatal_error="Sync failed: 401", errors=["Sync failed: 401"])
    scheduler = SyncScheduler(_StubSynchronizer(failed))

    assert scheduler.run_once().failed


def test_start_runs_immediately_and_stops_on_shutdown():
    synchronizer = _StubSynchronizer()
    scheduler = SyncScheduler(synchronizer, interval_minutes=60, poll_seconds=0.01)
    synchronizer.on_run = scheduler.shutdown

    scheduler.start()

    assert synchronizer.runs == 1
    assert synchronizer.shutdowns == 1
    assert scheduler.scheduler.jobs == []


def test_run_that_raises_is_logged_and_lock_released(caplog):
    synchronizer = _StubSynchronizer()

    def boom():
        raise RuntimeError("boom")

    synchronizer.on_run = boom
    scheduler = SyncScheduler(synchronizer)

    assert scheduler.run_once() is None
    assert "Error in scheduled task" in caplog.text

    synchronizer.on_run = None
    assert scheduler.run_once() is synchronizer.result
    assert synchronizer.runs == 2


def test_start_does_not_propagate_a_run_that_raises():
    synchronizer = _StubSynchronizer()
    scheduler = SyncScheduler(synchronizer, interval_minutes=60, poll_seconds=0.01)

    def stop_then_fail():
        scheduler.shutdown()
        raise RuntimeError("boom")

    synchronizer.on_run = stop_then_fail

    scheduler.start()

    assert synchronizer.runs == 1
    assert scheduler.last_result is None
