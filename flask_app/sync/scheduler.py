"""
Timer-driven scheduler for the transaction sync.

An explicit instance owns its timer handle and a snapshot of the job's
enablement and frequency. ``start``/``stop`` are called by the application;
``reschedule`` is called whenever staff change the configuration.
"""

from __future__ import annotations

import enum
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Protocol

from flask import Flask

from flask_app.models import MAX_SYNC_FREQUENCY_MINUTES, MIN_SYNC_FREQUENCY_MINUTES
from flask_app.models.base import utc_now

from .engine import SyncAlreadyRunning
from .metrics import record_scheduler_status
from .runner import SyncRunner


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


def _thread_timer(interval: float, function: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class SchedulerState(str, enum.Enum):
    DISABLED = "disabled"
    IDLE = "scheduled_idle"
    RUNNING = "running"


class SyncScheduler:
    def __init__(
        self,
        app: Flask,
        runner: SyncRunner,
        *,
        job_name: str | None = None,
        dispatch: Callable[[], object] | None = None,
        timer_factory: Callable[[float, Callable[[], None]], TimerHandle] = _thread_timer,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.app = app
        self.runner = runner
        self.job_name = job_name or runner.default_job_name
        self.dispatch = dispatch or (lambda: self.runner.run(job_name=self.job_name))
        self.timer_factory = timer_factory
        self.clock = clock
        self.logger = logger or app.logger
        self._lock = threading.RLock()
        self._timer: TimerHandle | None = None
        self._state = SchedulerState.DISABLED
        self._active = False
        self._frequency_minutes: int | None = None
        self._next_run_at: datetime | None = None
        self._stopped = False

    # Introspection --------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> float | None:
        """Seconds between ticks for the current snapshot, or None when disabled."""
        if not self._active or self._frequency_minutes is None:
            return None
        return self.compute_interval(self._frequency_minutes)

    @property
    def next_run_at(self) -> datetime | None:
        return self._next_run_at

    @staticmethod
    def compute_interval(frequency_minutes: int) -> float:
        minutes = min(max(int(frequency_minutes), MIN_SYNC_FREQUENCY_MINUTES), MAX_SYNC_FREQUENCY_MINUTES)
        return float(minutes * 60)

    def as_dict(self) -> dict[str, object]:
        return {
            "state": self._state.value,
            "jobName": self.job_name,
            "intervalSeconds": self.interval,
            "nextRunAt": self._next_run_at.isoformat() if self._next_run_at else None,
        }

    # Lifecycle ------------------------------------------------------------------

    def start(self) -> None:
        """Read the job configuration and arm the timer if the job is active."""
        with self.app.app_context():
            config = self.runner.config_service(self.job_name).get_or_create()
            is_active, frequency = config.is_active, config.sync_frequency_minutes
        with self._lock:
            self._stopped = False
            self._apply_locked(is_active, frequency)
        self.logger.info(
            "Sync scheduler started in state %s",
            self._state.value,
            extra={"sync_job": self.job_name, "sync_interval_seconds": self.interval},
        )

    def stop(self) -> None:
        """Cancel the pending timer. A run already in progress is left to finish."""
        with self._lock:
            self._stopped = True
            self._cancel_locked()
            if self._state != SchedulerState.RUNNING:
                self._state = SchedulerState.DISABLED
            self._next_run_at = None
        record_scheduler_status(False)
        self.logger.info("Sync scheduler stopped", extra={"sync_job": self.job_name})

    def reschedule(self, *, is_active: bool, frequency_minutes: int) -> None:
        """Apply new settings immediately: cancel the pending timer and re-arm or disable."""
        with self._lock:
            if self._stopped:
                self._active, self._frequency_minutes = is_active, frequency_minutes
                return
            self._apply_locked(is_active, frequency_minutes)
        self.logger.info(
            "Sync scheduler rescheduled",
            extra={
                "sync_job": self.job_name,
                "sync_is_active": is_active,
                "sync_frequency_minutes": frequency_minutes,
                "sync_next_run_at": self._next_run_at.isoformat() if self._next_run_at else None,
            },
        )

    # Internal helpers -----------------------------------------------------------

    def _apply_locked(self, is_active: bool, frequency_minutes: int) -> None:
        self._active = bool(is_active)
        self._frequency_minutes = int(frequency_minutes)
        self._cancel_locked()
        if self._state == SchedulerState.RUNNING:
            # The running tick re-arms with the new snapshot when it finishes.
            return
        if self._active:
            self._arm_locked()
            self._state = SchedulerState.IDLE
        else:
            self._state = SchedulerState.DISABLED
            self._next_run_at = None
        record_scheduler_status(self._active)

    def _arm_locked(self) -> None:
        interval = self.compute_interval(self._frequency_minutes)
        timer = self.timer_factory(interval, self._tick)
        self._timer = timer
        self._next_run_at = self.clock() + timedelta(seconds=interval)
        timer.start()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        with self._lock:
            if self._state == SchedulerState.RUNNING:
                self.logger.info("Sync tick skipped; previous run still in progress", extra={"sync_job": self.job_name})
                return
            if self._stopped or not self._active:
                return
            self._state = SchedulerState.RUNNING
            self._timer = None
            self._next_run_at = None

        try:
            self.dispatch()
        except SyncAlreadyRunning:
            self.logger.info("Sync tick skipped; job already running", extra={"sync_job": self.job_name})
        except Exception:
            self.logger.error("Scheduled sync failed", exc_info=True, extra={"sync_job": self.job_name})
        finally:
            with self._lock:
                self._state = SchedulerState.IDLE if self._active else SchedulerState.DISABLED
                if self._active and not self._stopped:
                    self._arm_locked()
                elif self._stopped:
                    self._state = SchedulerState.DISABLED
