"""
Read/modify/write access to the persisted sync job configuration, plus the
status derivation shown to staff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Mapping

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from flask_app.models import (
    DEFAULT_SYNC_FREQUENCY_MINUTES,
    MAX_SYNC_FREQUENCY_MINUTES,
    MIN_SYNC_FREQUENCY_MINUTES,
    SyncConfig,
    SyncStatus,
    db,
)
from flask_app.models.base import ensure_utc, isoformat_or_none, utc_now


class SyncConfigValidationError(ValueError):
    """Raised when a config update payload has the wrong types or out-of-range values."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class SyncConfigUpdate:
    is_active: bool | None = None
    sync_frequency_minutes: int | None = None


def validate_update_payload(payload: Any) -> SyncConfigUpdate:
    """
    Validate a ``{isActive, syncFrequencyMinutes}`` body. Either key may be
    omitted, but at least one must be present.
    """
    if not isinstance(payload, Mapping):
        raise SyncConfigValidationError("Request body must be a JSON object")

    is_active = payload.get("isActive")
    if "isActive" in payload and not isinstance(is_active, bool):
        raise SyncConfigValidationError("isActive must be a boolean", field="isActive")

    frequency = payload.get("syncFrequencyMinutes")
    if "syncFrequencyMinutes" in payload:
        if isinstance(frequency, float) and frequency.is_integer():
            frequency = int(frequency)
        if isinstance(frequency, bool) or not isinstance(frequency, int):
            raise SyncConfigValidationError("syncFrequencyMinutes must be an integer", field="syncFrequencyMinutes")
        if not MIN_SYNC_FREQUENCY_MINUTES <= frequency <= MAX_SYNC_FREQUENCY_MINUTES:
            raise SyncConfigValidationError(
                f"syncFrequencyMinutes must be between {MIN_SYNC_FREQUENCY_MINUTES} "
                f"and {MAX_SYNC_FREQUENCY_MINUTES}",
                field="syncFrequencyMinutes",
            )

    if "isActive" not in payload and "syncFrequencyMinutes" not in payload:
        raise SyncConfigValidationError("Provide isActive and/or syncFrequencyMinutes")

    return SyncConfigUpdate(
        is_active=is_active if "isActive" in payload else None,
        sync_frequency_minutes=frequency if "syncFrequencyMinutes" in payload else None,
    )


class SyncConfigService:
    """Access to one named sync job's configuration row."""

    def __init__(
        self,
        job_name: str,
        *,
        session: Session | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utc_now,
        lookback_days: int = 7,
        overlap_days: int = 1,
    ) -> None:
        self.job_name = job_name
        self.session = session or db.session
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.lookback_days = lookback_days
        self.overlap_days = overlap_days

    # Reads ----------------------------------------------------------------------

    def get(self) -> SyncConfig | None:
        return self.session.query(SyncConfig).filter_by(name=self.job_name).first()

    def get_or_create(self) -> SyncConfig:
        """Return the job row, creating it with defaults on first use."""
        config = self.get()
        if config is not None:
            return config
        config = SyncConfig(
            name=self.job_name,
            is_active=True,
            sync_frequency_minutes=DEFAULT_SYNC_FREQUENCY_MINUTES,
            last_sync_status=SyncStatus.NEVER_RUN,
            total_records_synced=0,
        )
        self.session.add(config)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request created it first.
            self.session.rollback()
            config = self.get()
            if config is None:
                raise
        else:
            self.logger.info("Created default sync configuration", extra={"sync_job": self.job_name})
        return config

    def scheduled_range(self, *, today: date | None = None) -> tuple[date, date]:
        """
        Date window for a run without an explicit range: from the last
        successful sync minus the overlap margin (or the lookback window if
        there is none) through tomorrow.
        """
        today = today or self.clock().date()
        config = self.get()
        anchor = ensure_utc(config.last_success_at) if config is not None else None
        if anchor is not None:
            start = anchor.date() - timedelta(days=self.overlap_days)
        else:
            start = today - timedelta(days=self.lookback_days)
        end = today + timedelta(days=1)
        return min(start, end), end

    # Writes ---------------------------------------------------------------------

    def update(self, changes: SyncConfigUpdate) -> SyncConfig:
        config = self.get_or_create()
        if changes.is_active is not None:
            config.is_active = changes.is_active
        if changes.sync_frequency_minutes is not None:
            config.sync_frequency_minutes = changes.sync_frequency_minutes
        self.session.commit()
        self.logger.info(
            "Sync configuration updated",
            extra={
                "sync_job": self.job_name,
                "sync_is_active": config.is_active,
                "sync_frequency_minutes": config.sync_frequency_minutes,
            },
        )
        return config

    def try_claim(self, *, stale_after: timedelta) -> bool:
        """
        Mark the job in_progress unless another live run already holds it.

        Claims older than ``stale_after`` are treated as abandoned. Storage
        failures are logged and treated as a successful claim so the sync can
        still run.
        """
        try:
            config = self.get_or_create()
            now = self.clock()
            statement = (
                update(SyncConfig)
                .where(SyncConfig.id == config.id)
                .where(
                    or_(
                        SyncConfig.last_sync_status != SyncStatus.IN_PROGRESS,
                        SyncConfig.last_run_started_at.is_(None),
                        SyncConfig.last_run_started_at < now - stale_after,
                    )
                )
                .values(last_sync_status=SyncStatus.IN_PROGRESS, last_run_started_at=now)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(statement)
            self.session.commit()
            self.session.expire(config)
            return result.rowcount == 1
        except SQLAlchemyError:
            self.session.rollback()
            self.logger.error(
                "Could not mark sync job in progress; continuing without a claim",
                exc_info=True,
                extra={"sync_job": self.job_name},
            )
            return True

    def record_result(self, result) -> SyncConfig | None:
        """
        Persist a finished run. Never raises: a storage failure here is logged
        because the run's data work has already been committed.
        """
        try:
            config = self.get_or_create()
            finished_at = result.finished_at or self.clock()
            config.last_sync_at = finished_at
            config.last_sync_status = SyncStatus(result.status)
            config.last_sync_error = result.error_summary
            config.last_run_started_at = None
            config.last_result = result.to_dict()
            if result.status in (SyncStatus.SUCCESS.value, SyncStatus.PARTIAL_SUCCESS.value):
                config.last_success_at = finished_at
            if result.records_changed:
                config.total_records_synced = SyncConfig.total_records_synced + result.records_changed
            self.session.commit()
            return config
        except Exception:
            self.session.rollback()
            self.logger.error(
                "Failed to record sync result",
                exc_info=True,
                extra={"sync_job": self.job_name, "sync_status": getattr(result, "status", None)},
            )
            return None

    def release_claim(self) -> None:
        """Clear an in_progress claim that was never finalized (best-effort)."""
        try:
            self.session.rollback()
            config = self.get()
            if config is not None and config.last_sync_status == SyncStatus.IN_PROGRESS:
                config.last_sync_status = SyncStatus.ERROR
                config.last_sync_error = "Sync run ended unexpectedly before recording a result"
                config.last_sync_at = self.clock()
                config.last_run_started_at = None
                self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            self.logger.error("Failed to release sync claim", exc_info=True, extra={"sync_job": self.job_name})


def derive_status(config: SyncConfig | None) -> tuple[str, str]:
    """Map the stored state onto the (status, message) pair shown to staff."""

    if config is None:
        return "not_configured", "Sync configuration not found"
    if not config.is_active:
        return "disabled", "Sync is disabled"

    status = config.last_sync_status
    error = config.last_sync_error or "unknown error"
    if status == SyncStatus.SUCCESS:
        return "active", f"Last sync successful at {isoformat_or_none(config.last_sync_at)}"
    if status == SyncStatus.ERROR:
        return "error", f"Last sync failed: {error}"
    if status == SyncStatus.NEVER_RUN:
        return "pending", "Sync configured but never run"
    if status == SyncStatus.PENDING:
        return "pending", "Sync queued and waiting to start"
    if status == SyncStatus.IN_PROGRESS:
        return "in_progress", "Sync is currently running"
    return "partial_success", f"Last sync had issues: {error}"


def compute_next_sync_time(config: SyncConfig | None) -> datetime | None:
    if config is None or not config.is_active or config.last_sync_at is None:
        return None
    return ensure_utc(config.last_sync_at) + timedelta(minutes=config.sync_frequency_minutes)


def build_status_payload(config: SyncConfig | None) -> dict[str, Any]:
    status, message = derive_status(config)
    if config is None:
        return {
            "status": status,
            "message": message,
            "isActive": False,
            "frequency": None,
            "totalRecordsSynced": 0,
            "nextSyncTime": None,
            "lastSyncAt": None,
            "config": None,
        }
    next_sync = compute_next_sync_time(config)
    return {
        "status": status,
        "message": message,
        "isActive": config.is_active,
        "frequency": f"{config.sync_frequency_minutes} minutes",
        "totalRecordsSynced": config.total_records_synced,
        "nextSyncTime": next_sync.isoformat() if next_sync else None,
        "lastSyncAt": isoformat_or_none(config.last_sync_at),
        "config": config.to_dict(),
    }
