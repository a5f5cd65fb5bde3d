# flask_app/services/staff_service.py
"""
Staff account management shared by the staff API and the ``flask staff`` CLI.
"""

from typing import Any, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from flask_app.models import Staff, StaffRole, db


class StaffValidationError(ValueError):
    """Raised for bad staff payloads (missing names, bad email, duplicate account)."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


def _parse_role(value: Any) -> StaffRole:
    if isinstance(value, StaffRole):
        return value
    try:
        return StaffRole(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(role.value for role in StaffRole)
        raise StaffValidationError(f"role must be one of: {choices}", field="role")


def _required_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise StaffValidationError(f"{key} is required", field=key)
    return value.strip()


class StaffService:
    """Create, update and deactivate staff accounts."""

    @staticmethod
    def create_staff(
        *, email: str, first_name: str, last_name: str, role: Any = StaffRole.STAFF
    ) -> Staff:
        if Staff.find_by_email(email):
            raise StaffValidationError("A staff member with this email already exists", field="email")
        try:
            staff = Staff(
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                role=_parse_role(role),
                is_active=True,
            )
        except ValueError as exc:
            if isinstance(exc, StaffValidationError):
                raise
            raise StaffValidationError(str(exc), field="email")

        db.session.add(staff)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise StaffValidationError("A staff member with this email already exists", field="email")
        current_app.logger.info(
            "Staff account created", extra={"staff_id": staff.id, "staff_role": staff.role.value}
        )
        return staff

    @staticmethod
    def create_from_payload(payload: Mapping[str, Any]) -> Staff:
        return StaffService.create_staff(
            email=_required_text(payload, "email"),
            first_name=_required_text(payload, "firstName"),
            last_name=_required_text(payload, "lastName"),
            role=payload.get("role") or StaffRole.STAFF,
        )

    @staticmethod
    def update_from_payload(staff: Staff, payload: Mapping[str, Any]) -> Staff:
        if "firstName" in payload:
            staff.first_name = _required_text(payload, "firstName")
        if "lastName" in payload:
            staff.last_name = _required_text(payload, "lastName")
        if "role" in payload:
            staff.role = _parse_role(payload.get("role"))
        if "isActive" in payload:
            if not isinstance(payload["isActive"], bool):
                raise StaffValidationError("isActive must be a boolean", field="isActive")
            staff.is_active = payload["isActive"]
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return staff

    @staticmethod
    def deactivate(staff: Staff) -> Staff:
        staff.is_active = False
        db.session.commit()
        current_app.logger.info("Staff account deactivated", extra={"staff_id": staff.id})
        return staff
