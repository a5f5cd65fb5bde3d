import json

from flask_app.models import SyncConfig, Transaction, db


def _config():
    db.session.expire_all()
    return SyncConfig.query.filter_by(name="payment_transactions").one()


def test_status_command_prints_payload(runner):
    result = runner.invoke(args=["sync", "status"])

    assert result.exit_code == 0
    assert json.loads(result.output)["status"] == "not_configured"


def test_run_command_with_range(runner, install_payment_client, make_transaction):
    fake = install_payment_client([[make_transaction(1), make_transaction(2)]])

    result = runner.invoke(args=["sync", "run", "--start-date", "2024-03-01", "--end-date", "2024-03-31"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["transactionsProcessed"] == 2
    assert payload["scheduled"] is False
    assert fake.calls[0]["start_date"].isoformat() == "2024-03-01"
    db.session.expire_all()
    assert Transaction.query.count() == 2


def test_run_command_requires_both_dates(runner):
    result = runner.invoke(args=["sync", "run", "--start-date", "2024-03-01"])

    assert result.exit_code == 2
    assert "must be given together" in result.output


def test_run_command_exits_nonzero_on_error(runner):
    result = runner.invoke(args=["sync", "run"])

    assert result.exit_code == 1
    assert json.loads(result.output)["status"] == "error"
    assert _config().last_sync_error.startswith("Payment API is not configured")


def test_run_command_reports_busy_job(app, runner):
    lock = app.extensions["sync"]["runner"]._lock_for("payment_transactions")
    lock.acquire()
    try:
        result = runner.invoke(args=["sync", "run"])
    finally:
        lock.release()

    assert result.exit_code == 1
    assert "already running" in result.output


def test_set_frequency_command(runner):
    result = runner.invoke(args=["sync", "set-frequency", "15"])

    assert result.exit_code == 0
    assert "Sync frequency set to 15 minutes." in result.output
    assert _config().sync_frequency_minutes == 15


def test_set_frequency_rejects_out_of_range(runner):
    result = runner.invoke(args=["sync", "set-frequency", "0"])

    assert result.exit_code == 2
    assert "between 1 and 1440" in result.output


def test_enable_and_disable_commands(runner):
    assert runner.invoke(args=["sync", "disable"]).output.strip() == "Scheduled sync disabled."
    assert _config().is_active is False

    assert runner.invoke(args=["sync", "enable"]).output.strip() == "Scheduled sync enabled."
    assert _config().is_active is True
