"""
``flask sync`` commands: inspect status, run syncs, adjust the schedule and
manage the Celery worker.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from flask_app.models import SyncStatus

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .config_service import SyncConfigUpdate, SyncConfigValidationError, build_status_payload, validate_update_payload
from .engine import SyncAlreadyRunning
from .runner import get_sync_runner


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


def _apply_update(app, changes: SyncConfigUpdate) -> dict:
    with app.app_context():
        service = get_sync_runner(app).config_service()
        config = service.update(changes)
        scheduler = app.extensions.get("sync", {}).get("scheduler")
        if scheduler is not None:
            scheduler.reschedule(is_active=config.is_active, frequency_minutes=config.sync_frequency_minutes)
        return config.to_dict()


@click.group(name="sync")
def sync_cli():
    """Transaction sync management commands."""


@sync_cli.command("status")
@click.pass_context
def sync_status(ctx):
    """Print the derived sync status as JSON."""
    app = _load_app(ctx)
    with app.app_context():
        config = get_sync_runner(app).config_service().get()
        click.echo(json.dumps(build_status_payload(config), indent=2))


@sync_cli.command("run")
@click.option("--start-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="First day of the range (YYYY-MM-DD).")
@click.option("--end-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Last day of the range (YYYY-MM-DD).")
@click.pass_context
def sync_run(ctx, start_date: Optional[datetime], end_date: Optional[datetime]):
    """
    Run a sync in this process. Without dates the scheduled window is used.
    """
    if (start_date is None) != (end_date is None):
        raise click.UsageError("--start-date and --end-date must be given together.")
    if start_date and end_date and start_date > end_date:
        raise click.UsageError("--start-date must be on or before --end-date.")

    app = _load_app(ctx)
    runner = get_sync_runner(app)
    with app.app_context():
        try:
            result = runner.run(
                start_date=start_date.date() if start_date else None,
                end_date=end_date.date() if end_date else None,
            )
        except SyncAlreadyRunning as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.status == SyncStatus.ERROR.value:
            ctx.exit(1)


@sync_cli.command("set-frequency")
@click.argument("minutes", type=int)
@click.pass_context
def sync_set_frequency(ctx, minutes: int):
    """Change how often the scheduler runs the sync."""
    app = _load_app(ctx)
    try:
        changes = validate_update_payload({"syncFrequencyMinutes": minutes})
    except SyncConfigValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="MINUTES") from exc
    payload = _apply_update(app, changes)
    click.echo(f"Sync frequency set to {payload['syncFrequencyMinutes']} minutes.")


@sync_cli.command("enable")
@click.pass_context
def sync_enable(ctx):
    """Enable scheduled syncing."""
    _apply_update(_load_app(ctx), SyncConfigUpdate(is_active=True))
    click.echo("Scheduled sync enabled.")


@sync_cli.command("disable")
@click.pass_context
def sync_disable(ctx):
    """Disable scheduled syncing."""
    _apply_update(_load_app(ctx), SyncConfigUpdate(is_active=False))
    click.echo("Scheduled sync disabled.")


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Sync Celery app is unavailable. Ensure the sync package initialises before running worker commands."
        )
    return celery_app


@sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the sync background worker."""
    app = _load_app(ctx)
    state = app.extensions.get("sync", {})
    if not state.get("worker_enabled") and not app.config.get("SYNC_WORKER_ENABLED"):
        click.echo(
            "Warning: SYNC_WORKER_ENABLED is false. Commands will still run, "
            "but triggers and scheduler ticks keep running in-process.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting sync worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'sync.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))
