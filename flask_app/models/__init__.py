# flask_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .customer import Customer, CustomerType
from .staff import OtpCode, Staff, StaffRole
from .sync import (
    DEFAULT_SYNC_FREQUENCY_MINUTES,
    MAX_SYNC_FREQUENCY_MINUTES,
    MIN_SYNC_FREQUENCY_MINUTES,
    SyncConfig,
    SyncStatus,
)
from .transaction import REFUNDED_STATUS, SETTLED_STATUS, Transaction

__all__ = [
    "db",
    "BaseModel",
    "Staff",
    "StaffRole",
    "OtpCode",
    "Customer",
    "CustomerType",
    "Transaction",
    "SETTLED_STATUS",
    "REFUNDED_STATUS",
    "SyncConfig",
    "SyncStatus",
    "MIN_SYNC_FREQUENCY_MINUTES",
    "MAX_SYNC_FREQUENCY_MINUTES",
    "DEFAULT_SYNC_FREQUENCY_MINUTES",
]
