"""
Sync blueprint: configuration, status, manual trigger and range sync endpoints.
"""

from __future__ import annotations

from datetime import date
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from flask_app.models import db

from .adapters.payment_api import check_payment_api_readiness
from .celery_app import DEFAULT_QUEUE_NAME
from .config_service import SyncConfigValidationError, build_status_payload, validate_update_payload
from .engine import SyncAlreadyRunning
from .runner import get_sync_runner

sync_blueprint = Blueprint("sync", __name__, url_prefix="/api/sync")


def _state() -> dict:
    return current_app.extensions.get("sync", {})


def _error(message: str, status: HTTPStatus, **extra):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _already_running(exc: SyncAlreadyRunning):
    return _error(str(exc), HTTPStatus.CONFLICT, jobName=exc.job_name)


def _parse_date(value, field: str) -> date:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"{field} must be a date in YYYY-MM-DD format") from exc


@sync_blueprint.get("/health")
def sync_healthcheck():
    """Report adapter readiness and scheduler state without touching the processor."""
    state = _state()
    scheduler = state.get("scheduler")
    readiness = check_payment_api_readiness(current_app.config)
    return (
        jsonify(
            {
                "status": "ok",
                "paymentApi": readiness.as_dict(),
                "scheduler": scheduler.as_dict() if scheduler is not None else {"state": "not_started"},
                "workerEnabled": state.get("worker_enabled", False),
                "queue": DEFAULT_QUEUE_NAME,
            }
        ),
        HTTPStatus.OK,
    )


@sync_blueprint.get("/config")
@login_required
def get_sync_config():
    service = get_sync_runner(current_app).config_service()
    try:
        config = service.get_or_create()
    except Exception:
        db.session.rollback()
        current_app.logger.error("Failed to load sync configuration", exc_info=True)
        return _error("Failed to load sync configuration", HTTPStatus.INTERNAL_SERVER_ERROR)
    return jsonify(config.to_dict()), HTTPStatus.OK


@sync_blueprint.put("/config")
@login_required
def update_sync_config():
    try:
        changes = validate_update_payload(request.get_json(silent=True))
    except SyncConfigValidationError as exc:
        return _error(str(exc), HTTPStatus.BAD_REQUEST, field=exc.field)

    service = get_sync_runner(current_app).config_service()
    try:
        config = service.update(changes)
    except Exception:
        db.session.rollback()
        current_app.logger.error("Failed to update sync configuration", exc_info=True)
        return _error("Failed to update sync configuration", HTTPStatus.INTERNAL_SERVER_ERROR)

    scheduler = _state().get("scheduler")
    if scheduler is not None:
        scheduler.reschedule(is_active=config.is_active, frequency_minutes=config.sync_frequency_minutes)

    current_app.logger.info(
        "Sync configuration changed by %s",
        current_user.email,
        extra={
            "sync_job": service.job_name,
            "sync_is_active": config.is_active,
            "sync_frequency_minutes": config.sync_frequency_minutes,
        },
    )
    return jsonify(config.to_dict()), HTTPStatus.OK


@sync_blueprint.get("/status")
@login_required
def get_sync_status():
    service = get_sync_runner(current_app).config_service()
    try:
        config = service.get()
    except Exception:
        db.session.rollback()
        current_app.logger.error("Failed to load sync status", exc_info=True)
        return _error("Failed to load sync status", HTTPStatus.INTERNAL_SERVER_ERROR)
    return jsonify(build_status_payload(config)), HTTPStatus.OK


@sync_blueprint.post("/trigger")
@login_required
def trigger_sync():
    """
    Start a sync over the scheduled window.

    Worker mode enqueues a Celery task (202 with the task id); ``inline`` mode
    runs in the request and returns the result; ``background`` mode starts a
    thread and acknowledges immediately.
    """
    state = _state()
    runner = get_sync_runner(current_app)
    job_name = runner.default_job_name
    extra = {"sync_job": job_name, "sync_triggered_by": current_user.email}

    if state.get("worker_enabled"):
        if runner.is_running(job_name):
            return _already_running(SyncAlreadyRunning(job_name))
        celery_app = state.get("celery_app")
        task = celery_app.tasks.get("sync.run_scheduled") if celery_app is not None else None
        if task is None:
            return _error("Sync worker is not available", HTTPStatus.SERVICE_UNAVAILABLE)
        async_result = task.apply_async(kwargs={"job_name": job_name})
        current_app.logger.info("Manual sync queued", extra={**extra, "sync_task_id": async_result.id})
        return jsonify({"status": "queued", "taskId": async_result.id, "queue": DEFAULT_QUEUE_NAME}), HTTPStatus.ACCEPTED

    mode = current_app.config.get("SYNC_TRIGGER_MODE", "background")
    try:
        if mode == "inline":
            result = runner.run(job_name=job_name)
            current_app.logger.info("Manual sync completed", extra={**extra, "sync_status": result.status})
            return jsonify(result.to_dict()), HTTPStatus.OK
        runner.run_in_background(job_name=job_name)
    except SyncAlreadyRunning as exc:
        return _already_running(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.error("Manual sync failed to start", exc_info=True, extra=extra)
        return _error("Failed to trigger sync", HTTPStatus.INTERNAL_SERVER_ERROR)

    current_app.logger.info("Manual sync triggered", extra=extra)
    return jsonify({"status": "triggered", "message": "Sync started"}), HTTPStatus.ACCEPTED


@sync_blueprint.post("/range")
@login_required
def sync_range():
    """Run a sync synchronously over an explicit ``{startDate, endDate}`` range."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", HTTPStatus.BAD_REQUEST)
    try:
        start_date = _parse_date(payload.get("startDate"), "startDate")
        end_date = _parse_date(payload.get("endDate"), "endDate")
    except ValueError as exc:
        return _error(str(exc), HTTPStatus.BAD_REQUEST)
    if start_date > end_date:
        return _error("startDate must be on or before endDate", HTTPStatus.BAD_REQUEST)

    runner = get_sync_runner(current_app)
    try:
        result = runner.run(start_date=start_date, end_date=end_date)
    except SyncAlreadyRunning as exc:
        return _already_running(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.error(
            "Range sync failed",
            exc_info=True,
            extra={"sync_start_date": start_date.isoformat(), "sync_end_date": end_date.isoformat()},
        )
        return _error("Range sync failed", HTTPStatus.INTERNAL_SERVER_ERROR)
    return jsonify(result.to_dict()), HTTPStatus.OK
