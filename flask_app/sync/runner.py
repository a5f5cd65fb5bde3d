"""
Per-application entry point for running sync jobs.

Owns the in-process single-flight locks (one per job name) and builds a fresh
payment API client and engine for every run.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Any, Callable, Mapping

from flask import Flask, has_app_context

from flask_app.models import SyncStatus, db

from .adapters.payment_api import PaymentApiConfigError
from .adapters.payment_api.client import PaymentApiClient, create_payment_api_client
from .config_service import SyncConfigService
from .engine import SyncAlreadyRunning, SyncEngine, SyncResult

ClientFactory = Callable[[Mapping[str, Any], logging.Logger], PaymentApiClient]


def _default_client_factory(config: Mapping[str, Any], logger: logging.Logger) -> PaymentApiClient:
    return create_payment_api_client(config, logger=logger)


class SyncRunner:
    def __init__(
        self,
        app: Flask,
        *,
        client_factory: ClientFactory | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.app = app
        self.client_factory = client_factory or _default_client_factory
        self.sleep_fn = sleep_fn
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def default_job_name(self) -> str:
        return self.app.config.get("SYNC_JOB_NAME", "payment_transactions")

    @property
    def logger(self) -> logging.Logger:
        return self.app.logger

    def _lock_for(self, job_name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_name)
            if lock is None:
                lock = self._locks[job_name] = threading.Lock()
            return lock

    def is_running(self, job_name: str | None = None) -> bool:
        return self._lock_for(job_name or self.default_job_name).locked()

    def config_service(self, job_name: str | None = None) -> SyncConfigService:
        config = self.app.config
        return SyncConfigService(
            job_name or self.default_job_name,
            logger=self.logger,
            lookback_days=config.get("SYNC_DEFAULT_LOOKBACK_DAYS", 7),
            overlap_days=config.get("SYNC_OVERLAP_DAYS", 1),
        )

    # Public API -----------------------------------------------------------------

    def run(
        self,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        job_name: str | None = None,
    ) -> SyncResult:
        """
        Run a sync synchronously. Without dates the scheduled window is used.

        Raises ``SyncAlreadyRunning`` when the job is already running in this
        process or another process holds a live claim on it.
        """
        job_name = job_name or self.default_job_name
        lock = self._lock_for(job_name)
        if not lock.acquire(blocking=False):
            raise SyncAlreadyRunning(job_name)
        try:
            if has_app_context():
                return self._execute(job_name, start_date, end_date)
            with self.app.app_context():
                try:
                    return self._execute(job_name, start_date, end_date)
                finally:
                    db.session.remove()
        finally:
            lock.release()

    def run_in_background(
        self,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        job_name: str | None = None,
    ) -> threading.Thread:
        """
        Start a run on a daemon thread and return immediately. The job lock is
        taken before returning so a concurrent trigger gets ``SyncAlreadyRunning``.
        """
        job_name = job_name or self.default_job_name
        lock = self._lock_for(job_name)
        if not lock.acquire(blocking=False):
            raise SyncAlreadyRunning(job_name)

        def _target() -> None:
            try:
                with self.app.app_context():
                    try:
                        self._execute(job_name, start_date, end_date)
                    except SyncAlreadyRunning:
                        self.logger.info("Background sync skipped; job claimed elsewhere", extra={"sync_job": job_name})
                    except Exception:
                        self.logger.error("Background sync failed", exc_info=True, extra={"sync_job": job_name})
                    finally:
                        db.session.remove()
            finally:
                lock.release()

        thread = threading.Thread(target=_target, name=f"sync-{job_name}", daemon=True)
        try:
            thread.start()
        except RuntimeError:
            lock.release()
            raise
        return thread

    # Internal helpers -----------------------------------------------------------

    def _execute(self, job_name: str, start_date: date | None, end_date: date | None) -> SyncResult:
        config = self.app.config
        service = self.config_service(job_name)
        scheduled = start_date is None or end_date is None

        try:
            client = self.client_factory(config, self.logger)
        except PaymentApiConfigError as exc:
            return self._record_config_failure(service, exc, start_date, end_date, scheduled=scheduled)

        engine_kwargs: dict[str, Any] = {}
        if self.sleep_fn is not None:
            engine_kwargs["sleep_fn"] = self.sleep_fn
        engine = SyncEngine(
            client,
            job_name=job_name,
            config_service=service,
            page_size=config.get("SYNC_PAGE_SIZE", 100),
            max_pages=config.get("SYNC_MAX_PAGES", 100),
            page_delay_seconds=config.get("PAYMENT_API_PAGE_DELAY_SECONDS", 0.0),
            run_timeout_seconds=config.get("SYNC_RUN_TIMEOUT_SECONDS", 30 * 60),
            logger=self.logger,
            **engine_kwargs,
        )
        try:
            if scheduled:
                return engine.run_scheduled()
            return engine.run(start_date, end_date)
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

    def _record_config_failure(
        self,
        service: SyncConfigService,
        exc: PaymentApiConfigError,
        start_date: date | None,
        end_date: date | None,
        *,
        scheduled: bool,
    ) -> SyncResult:
        if start_date is None or end_date is None:
            start_date, end_date = service.scheduled_range()
        result = SyncResult(
            job_name=service.job_name,
            start_date=start_date,
            end_date=end_date,
            scheduled=scheduled,
            status=SyncStatus.ERROR.value,
            fatal_error=f"Payment API is not configured: {exc}",
        )
        result.finished_at = result.started_at = service.clock()
        self.logger.error(
            "Transaction sync cannot start: %s",
            exc,
            extra={"sync_job": service.job_name},
        )
        service.record_result(result)
        return result


def get_sync_runner(app: Flask) -> SyncRunner:
    state = app.extensions.get("sync") or {}
    runner = state.get("runner")
    if runner is None:
        raise RuntimeError("Sync extension is not initialised; call init_sync(app) first.")
    return runner
