"""
Fixed-interval scheduler - one pass at a time, failures isolated per pass
"""
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs ``job`` immediately, then every ``interval`` seconds until stopped.

    Ticks are anchored to the wall clock of the first run. A pass that
    overruns its slot makes the scheduler skip the missed ticks instead of
    starting passes back to back or in parallel.
    """

    def __init__(self, job: Callable[[], object], interval: float,
                 stop_event: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.monotonic):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.job = job
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.in_progress = False
        self.runs = 0
        self.failures = 0

    def stop(self):
        """Request shutdown; a running pass finishes its current order first"""
        self.stop_event.set()

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def run_once(self) -> bool:
        """Run the job unless one is already running. Returns False if skipped."""
        if self.in_progress:
            logger.warning("Previous pass still running, skipping this tick")
            return False

        self.in_progress = True
        try:
            self.job()
        except Exception:
            self.failures += 1
            logger.exception("Pass failed")
        finally:
            self.in_progress = False
            self.runs += 1
        return True

    def run_forever(self):
        logger.info("Scheduler started, running every %s seconds", self.interval)
        next_run = self.clock()

        while not self.stopping:
            self.run_once()

            next_run += self.interval
            now = self.clock()
            if next_run <= now:
                missed = int((now - next_run) // self.interval) + 1
                logger.warning("Pass overran its slot, skipping %d tick(s)", missed)
                next_run += missed * self.interval

            # Event.wait returns early on stop()
            self.stop_event.wait(next_run - now)

        logger.info("Scheduler stopped after %d run(s)", self.runs)
