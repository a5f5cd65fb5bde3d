"""
Persistent state for the payment transaction sync job.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db, isoformat_or_none

MIN_SYNC_FREQUENCY_MINUTES = 1
MAX_SYNC_FREQUENCY_MINUTES = 1440
DEFAULT_SYNC_FREQUENCY_MINUTES = 60


class SyncStatus(str, enum.Enum):
    """Outcome of the most recent run of a sync job."""

    NEVER_RUN = "never_run"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"


class SyncConfig(BaseModel):
    """One row per named sync job; updated in place, never appended."""

    __tablename__ = "sync_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    sync_frequency_minutes: Mapped[int] = mapped_column(
        db.Integer, nullable=False, default=DEFAULT_SYNC_FREQUENCY_MINUTES
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    last_success_at: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True),
        comment="Finish time of the most recent success or partial_success run.",
    )
    last_sync_status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, name="sync_status_enum"),
        nullable=False,
        default=SyncStatus.NEVER_RUN,
    )
    last_sync_error: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    total_records_synced: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    last_run_started_at: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True),
        comment="Set when a run claims the job; used to detect abandoned claims.",
    )
    last_result: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    __table_args__ = (
        CheckConstraint(
            f"sync_frequency_minutes >= {MIN_SYNC_FREQUENCY_MINUTES} "
            f"AND sync_frequency_minutes <= {MAX_SYNC_FREQUENCY_MINUTES}",
            name="ck_sync_configs_frequency_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<SyncConfig {self.name} active={self.is_active} every={self.sync_frequency_minutes}m>"

    def to_dict(self) -> dict:
        status = self.last_sync_status
        return {
            "id": self.id,
            "name": self.name,
            "isActive": self.is_active,
            "syncFrequencyMinutes": self.sync_frequency_minutes,
            "lastSyncAt": isoformat_or_none(self.last_sync_at),
            "lastSuccessAt": isoformat_or_none(self.last_success_at),
            "lastSyncStatus": status.value if isinstance(status, SyncStatus) else status,
            "lastSyncError": self.last_sync_error,
            "totalRecordsSynced": self.total_records_synced,
            "createdAt": isoformat_or_none(self.created_at),
            "updatedAt": isoformat_or_none(self.updated_at),
        }
