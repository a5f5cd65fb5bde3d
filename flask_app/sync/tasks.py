"""
Celery tasks for the transaction sync worker.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from .engine import SyncAlreadyRunning
from .runner import get_sync_runner


@shared_task(name="sync.healthcheck", bind=True)
def sync_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
        "app_version": getattr(self.app, "user_options", {}).get("version"),
    }


def _run(job_name: str | None, start_date: date | None = None, end_date: date | None = None) -> dict[str, Any]:
    runner = get_sync_runner(current_app)
    try:
        result = runner.run(start_date=start_date, end_date=end_date, job_name=job_name)
    except SyncAlreadyRunning as exc:
        current_app.logger.info(
            "Sync task skipped; job already running",
            extra={"sync_job": exc.job_name},
        )
        return {"status": "skipped", "reason": "already_running", "jobName": exc.job_name}
    return result.to_dict()


@shared_task(name="sync.run_scheduled", bind=True)
def run_scheduled_sync(self, *, job_name: str | None = None) -> dict[str, Any]:
    """
    Run the job over its scheduled window (since the last successful sync).
    """
    return _run(job_name)


@shared_task(name="sync.run_range", bind=True)
def run_range_sync(self, *, start_date: str, end_date: str, job_name: str | None = None) -> dict[str, Any]:
    """
    Run the job over an explicit ``YYYY-MM-DD`` range.
    """
    return _run(job_name, date.fromisoformat(start_date), date.fromisoformat(end_date))
