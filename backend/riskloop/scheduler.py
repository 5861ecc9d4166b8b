"""Fixed-interval cycle scheduler."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from riskloop.controllers.cycle_controller import CycleController
from riskloop.models import CycleSummary, SchedulerStatus, utc_now
from riskloop.services.alert_service import AlertService

logger = logging.getLogger(__name__)


class CycleScheduler:
    """
    Drives CycleController on a fixed interval from a background thread.

    A cycle never runs concurrently with itself: if one is still in progress
    when another is requested, the new one is skipped and counted.
    """

    CHECKPOINT_EVERY = 10

    def __init__(
        self,
        controller: CycleController,
        interval_minutes: float = 10.0,
        alerts: Optional[AlertService] = None,
    ):
        """
        Initialize scheduler.

        Args:
            controller: Runs individual cycles
            interval_minutes: Default time between cycle starts
            alerts: Alert service for checkpoints and cycle failures
        """
        self.controller = controller
        self.interval_minutes = interval_minutes
        self.alerts = alerts or AlertService()

        self._cycle_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.last_cycle_time: Optional[datetime] = None
        self.next_cycle_time: Optional[datetime] = None
        self.cycles_completed = 0
        self.cycles_skipped = 0
        self.successful_trades = 0
        self.failed_trades = 0
        self.total_trades_attempted = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_minutes: Optional[float] = None) -> bool:
        """
        Start the background loop. The first cycle runs immediately.

        Returns:
            False if the scheduler was already running
        """
        if self.is_running:
            logger.warning("Scheduler already running")
            return False
        if interval_minutes is not None:
            if interval_minutes <= 0:
                raise ValueError("interval_minutes must be greater than 0")
            self.interval_minutes = interval_minutes

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="cycle-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"[OK] Scheduler started (every {self.interval_minutes:g} min)")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop; a cycle in progress is allowed to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self.next_cycle_time = None
        logger.info("Scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called. Returns True if stopped."""
        return self._stop_event.wait(timeout)

    def run_cycle_once(self, now: Optional[datetime] = None) -> CycleSummary:
        """
        Run one cycle unless another is already in progress.

        Returns:
            CycleSummary; `skipped` is True when a cycle was already running
        """
        if not self._cycle_lock.acquire(blocking=False):
            with self._stats_lock:
                self.cycles_skipped += 1
            logger.warning("Previous cycle still running, skipping this one")
            return CycleSummary(cycle_number=self.controller.cycle_count, started_at=now or utc_now(), skipped=True)

        try:
            summary = self.controller.run_cycle_once(now)
        finally:
            self._cycle_lock.release()

        with self._stats_lock:
            self.cycles_completed += 1
            self.last_cycle_time = summary.finished_at or summary.started_at
            executed = sum(1 for o in summary.outcomes if o.status == "executed")
            self.total_trades_attempted += executed + summary.failed
            self.successful_trades += executed
            self.failed_trades += summary.failed
            cycles_completed = self.cycles_completed

        if cycles_completed % self.CHECKPOINT_EVERY == 0:
            self.alerts.checkpoint(self.status())
        return summary

    def status(self) -> SchedulerStatus:
        with self._stats_lock:
            return SchedulerStatus(
                is_running=self.is_running,
                interval_minutes=self.interval_minutes,
                last_cycle_time=self.last_cycle_time,
                next_cycle_time=self.next_cycle_time,
                cycles_completed=self.cycles_completed,
                cycles_skipped=self.cycles_skipped,
                successful_trades=self.successful_trades,
                failed_trades=self.failed_trades,
                total_trades_attempted=self.total_trades_attempted,
            )

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            started = utc_now()
            try:
                self.run_cycle_once(started)
            except Exception as e:
                logger.error(f"[ERROR] Cycle failed: {e}", exc_info=True)
                self.alerts.cycle_error(self.controller.cycle_count, str(e))

            interval = timedelta(minutes=self.interval_minutes)
            self.next_cycle_time = started + interval
            remaining = (self.next_cycle_time - utc_now()).total_seconds()
            if remaining <= 0:
                logger.warning(f"Cycle took longer than interval {self.interval_minutes:g} min")
                continue
            logger.debug(f"Sleeping for {remaining:.1f} seconds until next cycle")
            self._stop_event.wait(remaining)
