import json
from typing import Any, Dict

from flask import Flask

from flask_app.models import Transaction, db
from flask_app.sync import get_celery_app, init_sync, start_sync_scheduler
from flask_app.sync.celery_app import DEFAULT_QUEUE_NAME, create_celery_app

EAGER_CELERY = {"task_always_eager": True, "task_eager_propagates": True}


def build_sync_app(**overrides) -> Flask:
    """
    Construct a minimal Flask app with the sync feature wired in for worker tests.
    """
    instance_path_override = overrides.pop("INSTANCE_PATH", None)
    if instance_path_override:
        app = Flask(__name__, instance_path=instance_path_override)
    else:
        app = Flask(__name__)
    app.config.update(SECRET_KEY="test-secret", TESTING=True)
    app.config.update(overrides)
    init_sync(app)
    return app


def test_celery_defaults_to_sqlite_transport(tmp_path):
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir()
    sqlite_path = instance_dir / "custom.sqlite"

    app = build_sync_app(
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG=EAGER_CELERY,
        INSTANCE_PATH=str(instance_dir),
    )

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_time_limit == 30 * 60 + 60


def test_celery_config_accepts_json_string(tmp_path):
    app = build_sync_app(
        INSTANCE_PATH=str(tmp_path),
        CELERY_CONFIG=json.dumps({"worker_prefetch_multiplier": 4}),
    )

    assert get_celery_app(app).conf.worker_prefetch_multiplier == 4


def test_tasks_are_registered(tmp_path):
    app = build_sync_app(INSTANCE_PATH=str(tmp_path), CELERY_CONFIG=EAGER_CELERY)

    registered = set(get_celery_app(app).tasks.keys())

    assert {"sync.healthcheck", "sync.run_scheduled", "sync.run_range"} <= registered


def test_worker_ping_cli(tmp_path):
    app = build_sync_app(INSTANCE_PATH=str(tmp_path), SYNC_WORKER_ENABLED=True, CELERY_CONFIG=EAGER_CELERY)

    result = app.test_cli_runner().invoke(args=["sync", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(tmp_path, monkeypatch):
    app = build_sync_app(INSTANCE_PATH=str(tmp_path), SYNC_WORKER_ENABLED=True, CELERY_CONFIG=EAGER_CELERY)
    celery_app = get_celery_app(app)
    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    result = app.test_cli_runner().invoke(
        args=["sync", "worker", "run", "--loglevel", "debug", "--concurrency", "2", "--pool", "solo"]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == ["worker", "--loglevel", "debug", "-Q", "sync", "--concurrency", "2", "--pool", "solo"]


def test_worker_commands_warn_when_disabled(tmp_path, monkeypatch):
    app = build_sync_app(INSTANCE_PATH=str(tmp_path), CELERY_CONFIG=EAGER_CELERY)
    monkeypatch.setattr(get_celery_app(app), "worker_main", lambda argv=None: None)

    result = app.test_cli_runner().invoke(args=["sync", "worker", "run"])

    assert result.exit_code == 0
    assert "SYNC_WORKER_ENABLED is false" in result.output


def test_range_task_runs_inside_app_context(app, tmp_path, install_payment_client, make_transaction):
    install_payment_client([[make_transaction(1), make_transaction(2)]])
    app.config.update(CELERY_SQLITE_PATH=str(tmp_path / "celery.sqlite"), CELERY_CONFIG=EAGER_CELERY)
    celery_app = create_celery_app(app)

    outcome = celery_app.tasks["sync.run_range"].apply(
        kwargs={"start_date": "2024-03-01", "end_date": "2024-03-31"}
    )

    payload = outcome.get()
    assert payload["status"] == "success"
    assert payload["transactionsProcessed"] == 2
    db.session.expire_all()
    assert Transaction.query.count() == 2


def test_scheduled_task_skips_busy_job(app, tmp_path):
    app.config.update(CELERY_SQLITE_PATH=str(tmp_path / "celery.sqlite"), CELERY_CONFIG=EAGER_CELERY)
    celery_app = create_celery_app(app)
    lock = app.extensions["sync"]["runner"]._lock_for("payment_transactions")
    lock.acquire()
    try:
        payload = celery_app.tasks["sync.run_scheduled"].apply(kwargs={}).get()
    finally:
        lock.release()

    assert payload == {"status": "skipped", "reason": "already_running", "jobName": "payment_transactions"}


def test_scheduler_dispatches_to_queue_when_worker_enabled(app):
    class Timer:
        def __init__(self, interval, function):
            self.function = function

        def start(self):
            pass

        def cancel(self):
            pass

    armed = []

    def timer_factory(interval, function):
        timer = Timer(interval, function)
        armed.append(timer)
        return timer

    queued = []

    class Task:
        def apply_async(self, kwargs=None):
            queued.append(kwargs)

    class CeleryStub:
        tasks = {"sync.run_scheduled": Task()}

    state = app.extensions["sync"]
    state["worker_enabled"] = True
    state["celery_app"] = CeleryStub()
    try:
        scheduler = start_sync_scheduler(app, timer_factory=timer_factory)
        armed[-1].function()
        scheduler.stop()
    finally:
        state["worker_enabled"] = False
        state["scheduler"] = None

    assert queued == [{"job_name": "payment_transactions"}]
