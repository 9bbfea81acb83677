"""
Scheduler - runs ingestion and reminders on jittered intervals.

Jobs run one at a time on the scheduler thread; each job also holds its own
non-blocking lock, so a run that is still going when its next slot comes up
is skipped rather than overlapped. stop() sets the shared cancellation
event: the running job finishes its current item and returns.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

import schedule

from leadrelay.config import config
from leadrelay.engine import ingestion, reminders
from leadrelay.engine.window import validate_reminder_cadence

logger = logging.getLogger(__name__)


class OrchestratorScheduler:
    """Periodic ingestion (poll + retries) and reminder runs."""

    def __init__(
        self,
        feed_ids: Optional[List[str]] = None,
        poll_minutes: Optional[int] = None,
        reminder_minutes: Optional[int] = None,
        jitter_minutes: Optional[int] = None,
        window_hours: Optional[float] = None,
    ):
        self.feed_ids = list(config.HUBSPOT_FORM_GUIDS if feed_ids is None else feed_ids)
        self.poll_minutes = poll_minutes or config.POLL_INTERVAL_MINUTES
        self.reminder_minutes = reminder_minutes or config.REMINDER_INTERVAL_MINUTES
        self.jitter_minutes = config.SCHEDULER_JITTER_MINUTES if jitter_minutes is None else jitter_minutes
        window_hours = config.REMINDER_WINDOW_HOURS if window_hours is None else window_hours

        validate_reminder_cadence(self.reminder_minutes, self.jitter_minutes, window_hours)

        self.cancel_event = threading.Event()
        self._locks: Dict[str, threading.Lock] = {}
        self._scheduler = schedule.Scheduler()

        self._scheduler.every(self.poll_minutes).to(self.poll_minutes + self.jitter_minutes).minutes.do(
            self._guarded, 'ingestion', self.run_ingestion
        )
        self._scheduler.every(self.reminder_minutes).to(self.reminder_minutes + self.jitter_minutes).minutes.do(
            self._guarded, 'reminders', self.run_reminders
        )

    @property
    def jobs(self):
        return self._scheduler.get_jobs()

    def _guarded(self, name: str, func: Callable[[], object]) -> bool:
        """Run func unless the same job is already running. Returns True if it ran."""
        lock = self._locks.setdefault(name, threading.Lock())
        if not lock.acquire(blocking=False):
            logger.warning(f"Job '{name}' still running, skipping this slot")
            return False
        try:
            func()
        except Exception as e:
            logger.error(f"Job '{name}' failed: {type(e).__name__}: {e}")
        finally:
            lock.release()
        return True

    def run_ingestion(self) -> None:
        """Poll every feed, then retry failed leads the polls did not already touch."""
        handled = set()
        for feed_id in self.feed_ids:
            if self.cancel_event.is_set():
                return
            try:
                summary = ingestion.poll(feed_id, cancel_event=self.cancel_event)
                handled.update(summary.get('lead_ids', []))
            except Exception as e:
                logger.error(f"Polling {feed_id} failed: {type(e).__name__}: {e}")
        ingestion.retry_failed_leads(cancel_event=self.cancel_event, skip_ids=handled)

    def run_reminders(self) -> None:
        reminders.run_reminders(cancel_event=self.cancel_event)

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_forever(self, tick_seconds: float = 1.0, initial_poll: bool = True) -> None:
        """Block until stop() is called. Polls once immediately when initial_poll is set."""
        logger.info(
            f"Scheduler started: feeds={self.feed_ids} poll={self.poll_minutes}m "
            f"reminders={self.reminder_minutes}m jitter<={self.jitter_minutes}m"
        )
        if initial_poll:
            self._guarded('ingestion', self.run_ingestion)

        while not self.cancel_event.is_set():
            self.run_pending()
            self.cancel_event.wait(tick_seconds)

        self._scheduler.clear()
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self.cancel_event.set()
