import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from croniter import croniter

from dailypick.crosscutting.config import ConfigError


logger = logging.getLogger(__name__)


class DailyScheduler:
    """Runs a job on a cron schedule in a background daemon thread.

    A failing job is logged and the scheduler keeps going with the next fire time.
    """

    def __init__(self,
                 job: Callable[[], Any],
                 cron_expression: str = '0 0 * * *',
                 now: Callable[[], datetime] = datetime.now):
        """Initialize scheduler.

        Args:
            job: Called once per fire time
            cron_expression: Five-field cron expression
            now: Time source returning a datetime
        """
        if not croniter.is_valid(cron_expression):
            raise ConfigError(f"Invalid cron expression '{cron_expression}'")

        self.job = job
        self.cron_expression = cron_expression
        self._now = now
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.run_count = 0

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """Calculate next run time from the cron expression."""
        return croniter(self.cron_expression, after or self._now()).get_next(datetime)

    def run_job(self) -> None:
        """Execute the job once, logging instead of raising on failure."""
        self.run_count += 1
        logger.info(f"Scheduled run #{self.run_count} - {self._now().strftime('%Y-%m-%d %H:%M:%S')}")
        try:
            self.job()
            logger.info(f"Scheduled run #{self.run_count} completed successfully")
        except Exception as e:
            logger.error(f"Scheduled run #{self.run_count} failed: {e}", exc_info=True)

    def _loop(self) -> None:
        next_run = self.next_run()
        while not self._stop_event.is_set():
            logger.info(f"Next scheduled run: {next_run.strftime('%Y-%m-%d %H:%M:%S')}")

            remaining = (next_run - self._now()).total_seconds()
            if self._stop_event.wait(timeout=max(0.0, remaining)):
                break

            self.run_job()
            # Never fire twice for the same slot, even if the wait returned early
            next_run = self.next_run(max(next_run, self._now()))

    def start(self) -> None:
        """Start the scheduler thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name='dailypick-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started with schedule '{self.cron_expression}'")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the scheduler thread and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
