# flask_app/models/staff.py

import enum
import secrets
from datetime import timedelta

from flask import current_app
from flask_login import UserMixin
from sqlalchemy import Enum, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import validates
from werkzeug.security import check_password_hash, generate_password_hash

from .base import BaseModel, db, ensure_utc, isoformat_or_none, utc_now


class StaffRole(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"


class Staff(BaseModel, UserMixin):
    """A staff member allowed to sign in to the dashboard."""

    __tablename__ = "staff"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    role = db.Column(Enum(StaffRole, name="staff_role_enum"), nullable=False, default=StaffRole.STAFF)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Staff {self.email}>"

    @validates("email")
    def validate_email(self, key, value):
        """Validate email format and store it lowercased"""
        from email_validator import EmailNotValidError, validate_email

        if not value or not value.strip():
            raise ValueError("Email is required")
        try:
            validate_email(value.strip(), check_deliverability=False)
        except EmailNotValidError:
            raise ValueError(f"Invalid email format: {value}")
        return value.strip().lower()

    @property
    def is_admin(self) -> bool:
        return self.role == StaffRole.ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @staticmethod
    def find_by_email(email):
        """Find a staff member by email (case-insensitive) with error handling"""
        if not email:
            return None
        try:
            return Staff.query.filter(func.lower(Staff.email) == email.strip().lower()).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding staff by email {email}: {str(e)}")
            return None

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role.value if self.role else None,
            "isActive": self.is_active,
            "lastLoginAt": isoformat_or_none(self.last_login_at),
            "createdAt": isoformat_or_none(self.created_at),
        }


class OtpCode(BaseModel):
    """Hashed one-time login code issued to a staff email address."""

    __tablename__ = "otp_codes"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    code_hash = db.Column(db.String(255), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @classmethod
    def issue(cls, email: str, *, ttl_minutes: int = 10) -> tuple["OtpCode", str]:
        """
        Create a fresh code for ``email``, invalidating any outstanding ones.

        Returns the persisted record and the plaintext code, which is never stored.
        """
        normalized = email.strip().lower()
        now = utc_now()
        cls.query.filter(cls.email == normalized, cls.consumed_at.is_(None)).update(
            {"consumed_at": now}, synchronize_session=False
        )
        code = f"{secrets.randbelow(1_000_000):06d}"
        record = cls(
            email=normalized,
            code_hash=generate_password_hash(code),
            expires_at=now + timedelta(minutes=ttl_minutes),
        )
        db.session.add(record)
        return record, code

    @classmethod
    def latest_for(cls, email: str):
        return (
            cls.query.filter(cls.email == email.strip().lower(), cls.consumed_at.is_(None))
            .order_by(cls.id.desc())
            .first()
        )

    @property
    def is_expired(self) -> bool:
        return ensure_utc(self.expires_at) <= utc_now()

    def check(self, code: str, *, max_attempts: int = 5) -> bool:
        """Register an attempt and return True when ``code`` matches and is still usable."""
        if self.consumed_at is not None or self.is_expired or self.attempts >= max_attempts:
            return False
        self.attempts += 1
        if not check_password_hash(self.code_hash, code.strip()):
            return False
        self.consumed_at = utc_now()
        return True
