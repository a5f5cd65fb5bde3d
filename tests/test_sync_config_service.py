from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from flask_app.models import SyncConfig, SyncStatus
from flask_app.models.base import db, utc_now
from flask_app.sync.config_service import (
    SyncConfigService,
    SyncConfigUpdate,
    SyncConfigValidationError,
    build_status_payload,
    compute_next_sync_time,
    derive_status,
    validate_update_payload,
)


@pytest.mark.parametrize("minutes", [1, 60, 1440])
def test_frequency_within_bounds_is_accepted(minutes):
    update = validate_update_payload({"isActive": True, "syncFrequencyMinutes": minutes})
    assert update == SyncConfigUpdate(is_active=True, sync_frequency_minutes=minutes)


@pytest.mark.parametrize("minutes", [0, 1441, -5])
def test_frequency_outside_bounds_is_rejected(minutes):
    with pytest.raises(SyncConfigValidationError) as exc:
        validate_update_payload({"syncFrequencyMinutes": minutes})
    assert exc.value.field == "syncFrequencyMinutes"
    assert "between 1 and 1440" in str(exc.value)


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"isActive": "yes"}, "isActive"),
        ({"isActive": 1}, "isActive"),
        ({"syncFrequencyMinutes": "15"}, "syncFrequencyMinutes"),
        ({"syncFrequencyMinutes": True}, "syncFrequencyMinutes"),
        ({"syncFrequencyMinutes": 15.5}, "syncFrequencyMinutes"),
    ],
)
def test_wrong_types_are_rejected(payload, field):
    with pytest.raises(SyncConfigValidationError) as exc:
        validate_update_payload(payload)
    assert exc.value.field == field


def test_integral_float_frequency_is_accepted():
    assert validate_update_payload({"syncFrequencyMinutes": 15.0}).sync_frequency_minutes == 15


def test_empty_or_non_object_payload_is_rejected():
    with pytest.raises(SyncConfigValidationError):
        validate_update_payload({})
    with pytest.raises(SyncConfigValidationError):
        validate_update_payload(["isActive"])
    with pytest.raises(SyncConfigValidationError):
        validate_update_payload(None)


def test_get_or_create_applies_defaults(app):
    service = SyncConfigService("payment_transactions")
    assert service.get() is None

    config = service.get_or_create()

    assert config.is_active is True
    assert config.sync_frequency_minutes == 60
    assert config.last_sync_status == SyncStatus.NEVER_RUN
    assert config.total_records_synced == 0
    assert service.get_or_create().id == config.id
    assert SyncConfig.query.count() == 1


def test_update_changes_only_given_fields(app):
    service = SyncConfigService("payment_transactions")
    service.get_or_create()

    config = service.update(SyncConfigUpdate(sync_frequency_minutes=15))

    assert config.sync_frequency_minutes == 15
    assert config.is_active is True


def test_jobs_are_independent(app):
    SyncConfigService("job_a").update(SyncConfigUpdate(is_active=False))
    assert SyncConfigService("job_b").get_or_create().is_active is True


def test_status_for_missing_config():
    assert derive_status(None) == ("not_configured", "Sync configuration not found")
    payload = build_status_payload(None)
    assert payload["status"] == "not_configured"
    assert payload["nextSyncTime"] is None
    assert payload["config"] is None


def test_status_reports_error_text(app):
    config = SyncConfig(
        name="payment_transactions",
        is_active=True,
        sync_frequency_minutes=60,
        last_sync_status=SyncStatus.ERROR,
        last_sync_error="boom",
    )
    status, message = derive_status(config)
    assert status == "error"
    assert "boom" in message


@pytest.mark.parametrize("last_status", list(SyncStatus))
def test_inactive_config_is_disabled_regardless_of_last_status(last_status):
    config = SyncConfig(name="payment_transactions", is_active=False, last_sync_status=last_status)
    assert derive_status(config)[0] == "disabled"


def test_status_for_success_partial_and_never_run():
    finished = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    success = SyncConfig(name="a", is_active=True, last_sync_status=SyncStatus.SUCCESS, last_sync_at=finished)
    partial = SyncConfig(
        name="b", is_active=True, last_sync_status=SyncStatus.PARTIAL_SUCCESS, last_sync_error="2 errors"
    )
    never = SyncConfig(name="c", is_active=True, last_sync_status=SyncStatus.NEVER_RUN)

    assert derive_status(success) == ("active", f"Last sync successful at {finished.isoformat()}")
    assert derive_status(partial) == ("partial_success", "Last sync had issues: 2 errors")
    assert derive_status(never) == ("pending", "Sync configured but never run")


def test_next_sync_time_requires_active_and_prior_run():
    last = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    config = SyncConfig(name="a", is_active=True, sync_frequency_minutes=15, last_sync_at=last)
    assert compute_next_sync_time(config) == last + timedelta(minutes=15)

    config.is_active = False
    assert compute_next_sync_time(config) is None

    assert compute_next_sync_time(SyncConfig(name="b", is_active=True, sync_frequency_minutes=15)) is None


def test_status_payload_shape(app):
    service = SyncConfigService("payment_transactions")
    config = service.get_or_create()
    config.last_sync_at = utc_now()
    config.last_sync_status = SyncStatus.SUCCESS
    db.session.commit()

    payload = build_status_payload(config)

    assert payload["status"] == "active"
    assert payload["frequency"] == "60 minutes"
    assert payload["isActive"] is True
    assert payload["totalRecordsSynced"] == 0
    assert payload["nextSyncTime"] is not None
    assert payload["config"]["syncFrequencyMinutes"] == 60


def test_scheduled_range_bounds(app):
    service = SyncConfigService("payment_transactions", lookback_days=7, overlap_days=1)
    today = date(2024, 5, 10)

    assert service.scheduled_range(today=today) == (date(2024, 5, 3), date(2024, 5, 11))

    config = service.get_or_create()
    config.last_success_at = datetime(2024, 5, 9, 6, 0, tzinfo=timezone.utc)
    db.session.commit()
    assert service.scheduled_range(today=today) == (date(2024, 5, 8), date(2024, 5, 11))


def test_claim_is_exclusive_until_released(app):
    service = SyncConfigService("payment_transactions")
    stale_after = timedelta(minutes=30)

    assert service.try_claim(stale_after=stale_after) is True
    assert service.try_claim(stale_after=stale_after) is False

    service.release_claim()
    config = service.get()
    assert config.last_sync_status == SyncStatus.ERROR
    assert "ended unexpectedly" in config.last_sync_error
    assert service.try_claim(stale_after=stale_after) is True
