"""
Scheduler service using APScheduler.

Drives a Schedule at a fixed resolution: a single tick job fires once
per minute (or once per second), collects the events that are due at
that instant and hands each of them to a worker thread.

Runs of the same event never overlap; a tick that finds the event still
running skips it and logs a warning.
"""

import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from scheduling.config import SchedulerConfig
from scheduling.event import Event
from scheduling.jobs import ExecutionError
from scheduling.schedule import Schedule

logger = logging.getLogger(__name__)

TICK_JOB_ID = "cron-events-tick"
TICK_EXECUTOR = "tick"


class SchedulerService:
    """
    Main scheduler service polling a Schedule for due events.

    Uses APScheduler for the tick loop and its thread pool for running
    due events concurrently.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        schedule: Optional[Schedule] = None,
        max_workers: Optional[int] = None,
        foreground: bool = False
    ):
        """
        Initialize scheduler service.

        Args:
            config_path: Path to scheduler configuration file
            schedule: Prebuilt schedule (default: built from configuration)
            max_workers: Maximum number of concurrent event runs
            foreground: If True, use blocking scheduler (for foreground mode)
        """
        self.config = SchedulerConfig(config_path)
        self.schedule = schedule if schedule is not None else self.config.build_schedule()
        self.foreground = foreground
        self.resolution = self.config.service.resolution
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        executors = {
            'default': ThreadPoolExecutor(max_workers or self.config.service.max_workers),
            TICK_EXECUTOR: ThreadPoolExecutor(1)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 30
        }

        if foreground:
            self.scheduler = BlockingScheduler(executors=executors, job_defaults=job_defaults)
        else:
            self.scheduler = BackgroundScheduler(executors=executors, job_defaults=job_defaults)

        self._setup_event_listeners()

        logger.info(f"Scheduler initialized with {len(self.schedule)} event(s)")

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_error_listener(event):
            logger.error(f"Job '{event.job_id}' raised exception: {event.exception}")

        def job_missed_listener(event):
            logger.warning(f"Job '{event.job_id}' missed scheduled run time")

        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop(wait=False)
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _tick_trigger_args(self) -> Dict[str, str]:
        if self.resolution == 'second':
            return {'second': '*'}
        return {'second': '0'}

    def _lock_for(self, event: Event) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(id(event), threading.Lock())

    def _current_instant(self) -> datetime:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        if self.resolution == 'second':
            return now
        return now.replace(second=0)

    def tick(self, now: Optional[datetime] = None) -> List[Event]:
        """
        Dispatch every event due at the given instant.

        Args:
            now: Evaluation instant (default: current time, truncated to the resolution)

        Returns:
            Events that were dispatched
        """
        if now is None:
            now = self._current_instant()

        due = self.schedule.due_events(now)
        for event in due:
            label = event.name or event.summary_for_display()
            if self.scheduler.running:
                self.scheduler.add_job(
                    self.run_event,
                    args=[event],
                    name=label
                )
            else:
                self.run_event(event)
        if due:
            logger.info(f"Dispatched {len(due)} due event(s) at {now.isoformat()}")
        return due

    def run_event(self, event: Event) -> bool:
        """
        Run an event unless a previous run of it is still in progress.

        Returns:
            True if the event ran, False if it was skipped
        """
        label = event.name or event.summary_for_display()
        lock = self._lock_for(event)
        if not lock.acquire(blocking=False):
            logger.warning(f"Event '{label}' is still running, skipping this run")
            return False
        try:
            status = self.schedule.run_event(event)
            if status.returncode not in (None, 0):
                logger.warning(f"Event '{label}' exited with code {status.returncode}")
            return True
        except ExecutionError as e:
            logger.error(f"Event '{label}' failed: {e}")
            return True
        finally:
            lock.release()

    def start(self):
        """Start the scheduler."""
        if self.scheduler.running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler.add_job(
            self.tick,
            'cron',
            id=TICK_JOB_ID,
            executor=TICK_EXECUTOR,
            replace_existing=True,
            **self._tick_trigger_args()
        )
        logger.info(f"Starting scheduler (resolution: {self.resolution})...")
        for event in self.schedule:
            logger.info(f"  - {event.get_expression()}  {event.summary_for_display()}")

        if self.foreground:
            self._setup_signal_handlers()
        self.scheduler.start()

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for running events to complete
        """
        if self.scheduler.running:
            logger.info("Stopping scheduler...")
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")
        else:
            logger.warning("Scheduler is not running")

    def is_running(self) -> bool:
        return self.scheduler.running
