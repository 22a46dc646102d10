"""
Periodic sync trigger.
"""

import logging
import threading

import schedule

from caldav_gcal_sync.models import SyncResult

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs a synchronizer on a daily time or a fixed minute interval.

    Runs never overlap: a tick that fires while a run is in flight is skipped.
    """

    def __init__(
        self,
        synchronizer,
        daily_at: str = "00:00",
        interval_minutes: int | None = None,
        poll_seconds: float = 30.0,
    ):
        self.synchronizer = synchronizer
        self.daily_at = daily_at
        self.interval_minutes = interval_minutes
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.last_result: SyncResult | None = None
        self._run_lock = threading.Lock()
        self._stop = threading.Event()

    def _register(self):
        self.scheduler.clear()
        if self.interval_minutes:
            self.scheduler.every(self.interval_minutes).minutes.do(self.run_once)
            logger.info(f"Calendar sync scheduled every {self.interval_minutes} minutes")
        else:
            self.scheduler.every().day.at(self.daily_at).do(self.run_once)
            logger.info(f"Calendar sync scheduled daily at {self.daily_at}")

    def run_once(self) -> SyncResult | None:
        """Run one sync unless another is still in progress.

        Returns None when the tick was skipped or the run raised; the loop
        keeps going either way.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous sync still running; skipping this tick")
            return None
        try:
            logger.info("Running scheduled task: calendar sync")
            result = self.synchronizer.run()
        except Exception:
            logger.exception("Error in scheduled task: calendar sync")
            return None
        finally:
            self._run_lock.release()

        self.last_result = result
        if result.failed:
            logger.error(f"Scheduled sync failed: {result.fatal_error}")
        else:
            logger.info(f"Completed scheduled task: {result.summary()}")
        return result

    def start(self, run_immediately: bool = True):
        """Block, running pending jobs until ``shutdown()`` is called."""
        self._register()
        if run_immediately:
            self.run_once()
        while not self._stop.is_set():
            self.scheduler.run_pending()
            self._stop.wait(self.poll_seconds)
        logger.info("Scheduler stopped")

    def shutdown(self):
        """Stop the loop and ask an in-flight run to stop between events."""
        self._stop.set()
        self.scheduler.clear()
        self.synchronizer.shutdown()

    @property
    def next_run(self):
        return self.scheduler.next_run
