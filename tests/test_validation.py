import pytest

from config.validation import validate_and_exit, validate_environment

PRODUCTION_ENV = {
    "SECRET_KEY": "a" * 64,
    "DATABASE_URL": "postgresql://giftline@db/giftline",
    "PAYMENT_API_BASE_URL": "https://payments.example.com",
    "PAYMENT_API_TOKEN": "token",
}


@pytest.fixture
def production_env(monkeypatch):
    for key in (
        "PAYMENT_API_PRIVATE_TOKEN",
        "PAYMENT_API_ACCESS_KEY_ID",
        "PAYMENT_API_SECRET_ACCESS_KEY",
        "SYNC_TRIGGER_MODE",
        "SYNC_WORKER_ENABLED",
        "CELERY_BROKER_URL",
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in PRODUCTION_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


def test_non_production_is_not_validated():
    assert validate_environment("testing") == (True, [])


def test_complete_production_environment_is_valid(production_env):
    assert validate_environment("production") == (True, [])


def test_missing_payment_credentials_fail(production_env):
    production_env.delenv("PAYMENT_API_TOKEN")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("Payment API credentials are required" in error for error in errors)


def test_half_key_pair_fails(production_env):
    production_env.setenv("PAYMENT_API_ACCESS_KEY_ID", "AKID")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("must be set together" in error for error in errors)


def test_worker_requires_broker(production_env):
    production_env.setenv("SYNC_WORKER_ENABLED", "true")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("CELERY_BROKER_URL" in error for error in errors)


def test_validate_and_exit_stops_startup(production_env, capsys):
    production_env.setenv("SECRET_KEY", "your-secret-key")

    with pytest.raises(SystemExit) as exc:
        validate_and_exit("production")

    assert exc.value.code == 1
    assert "SECRET_KEY is required" in capsys.readouterr().err
