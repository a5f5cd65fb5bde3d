"""
Transaction sync feature package.

``init_sync`` records the sync state inside ``app.extensions['sync']``, mounts
the blueprint and CLI, and prepares the Celery app when the worker is enabled.
The scheduler is started separately via ``start_sync_scheduler`` so importing
the application never arms a timer by itself.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from .adapters.payment_api import check_payment_api_readiness
from .celery_app import ensure_celery_app, get_celery_app
from .cli import sync_cli
from .engine import SyncAlreadyRunning, SyncEngine, SyncResult
from .runner import SyncRunner, get_sync_runner
from .scheduler import SchedulerState, SyncScheduler
from .views import sync_blueprint

SYNC_EXTENSION_KEY = "sync"

__all__ = [
    "init_sync",
    "start_sync_scheduler",
    "stop_sync_scheduler",
    "get_sync_state",
    "get_sync_runner",
    "get_celery_app",
    "SYNC_EXTENSION_KEY",
    "SyncAlreadyRunning",
    "SyncEngine",
    "SyncResult",
    "SyncRunner",
    "SyncScheduler",
    "SchedulerState",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        SYNC_EXTENSION_KEY,
        {
            "runner": None,
            "scheduler": None,
            "worker_enabled": False,
            "celery_app": None,
            "payment_api_readiness": {},
        },
    )


def get_sync_state(app: Flask) -> dict[str, Any]:
    return app.extensions.get(SYNC_EXTENSION_KEY, {})


def _set_cli(app: Flask) -> None:
    # Avoid duplicate registrations when the app is re-initialised in tests
    if sync_cli.name in app.cli.commands:
        app.cli.commands.pop(sync_cli.name)
    app.cli.add_command(sync_cli)


def init_sync(app: Flask, *, runner: SyncRunner | None = None) -> dict[str, Any]:
    """
    Wire the sync feature into ``app`` and return its extension state.
    """
    state = _ensure_extension_state(app)
    worker_enabled = bool(app.config.get("SYNC_WORKER_ENABLED", False))
    state["worker_enabled"] = worker_enabled
    if runner is not None or state.get("runner") is None:
        state["runner"] = runner or SyncRunner(app)

    if sync_blueprint.name not in app.blueprints:
        app.register_blueprint(sync_blueprint)
    _set_cli(app)

    if worker_enabled:
        ensure_celery_app(app, state)

    readiness = check_payment_api_readiness(app.config)
    state["payment_api_readiness"] = readiness.as_dict()
    if readiness.status != "ready":
        app.logger.warning(
            "Payment API adapter not ready (status=%s). %s",
            readiness.status,
            "; ".join(readiness.messages()) or "No additional context provided.",
            extra={"payment_api_status": readiness.status, "payment_api_messages": list(readiness.messages())},
        )
    return state


def _queue_dispatch(app: Flask, state: dict[str, Any], job_name: str):
    def _dispatch() -> object:
        celery_app = ensure_celery_app(app, state)
        return celery_app.tasks["sync.run_scheduled"].apply_async(kwargs={"job_name": job_name})

    return _dispatch


def start_sync_scheduler(app: Flask, **scheduler_kwargs) -> SyncScheduler:
    """
    Build (or restart) the scheduler for the configured job and arm its timer.
    """
    state = _ensure_extension_state(app)
    existing: SyncScheduler | None = state.get("scheduler")
    if existing is not None:
        existing.stop()

    runner = get_sync_runner(app)
    job_name = runner.default_job_name
    if state.get("worker_enabled") and "dispatch" not in scheduler_kwargs:
        scheduler_kwargs["dispatch"] = _queue_dispatch(app, state, job_name)

    scheduler = SyncScheduler(app, runner, job_name=job_name, **scheduler_kwargs)
    state["scheduler"] = scheduler
    scheduler.start()
    return scheduler


def stop_sync_scheduler(app: Flask) -> None:
    scheduler: SyncScheduler | None = get_sync_state(app).get("scheduler")
    if scheduler is not None:
        scheduler.stop()
