# flask_app/routes/staff.py

"""
Staff account management API
"""

from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from flask_app.models import Staff, db
from flask_app.services.staff_service import StaffService, StaffValidationError


def admin_required(view):
    """Allow the request only for signed-in admins."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        if not current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return view(*args, **kwargs)

    return wrapper


def register_staff_routes(app):
    """Register staff routes"""

    @app.route("/api/staff", methods=["GET"])
    @login_required
    def api_list_staff():
        include_inactive = request.args.get("includeInactive", "false").lower() == "true"
        query = Staff.query
        if not include_inactive:
            query = query.filter(Staff.is_active.is_(True))
        members = query.order_by(Staff.last_name, Staff.first_name).all()
        return jsonify({"staff": [member.to_dict() for member in members]})

    @app.route("/api/staff", methods=["POST"])
    @admin_required
    def api_create_staff():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        try:
            staff = StaffService.create_from_payload(payload)
        except StaffValidationError as e:
            status = 409 if "already exists" in str(e) else 400
            return jsonify({"error": str(e), "field": e.field}), status
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error creating staff member: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to create staff member"}), 500
        return jsonify(staff.to_dict()), 201

    @app.route("/api/staff/<int:staff_id>", methods=["GET"])
    @login_required
    def api_get_staff(staff_id):
        staff = db.session.get(Staff, staff_id)
        if staff is None:
            return jsonify({"error": "Staff member not found"}), 404
        return jsonify(staff.to_dict())

    @app.route("/api/staff/<int:staff_id>", methods=["PUT"])
    @admin_required
    def api_update_staff(staff_id):
        staff = db.session.get(Staff, staff_id)
        if staff is None:
            return jsonify({"error": "Staff member not found"}), 404
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        if staff.id == current_user.id and payload.get("isActive") is False:
            return jsonify({"error": "You cannot deactivate your own account"}), 400
        try:
            staff = StaffService.update_from_payload(staff, payload)
        except StaffValidationError as e:
            db.session.rollback()
            return jsonify({"error": str(e), "field": e.field}), 400
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error updating staff member {staff_id}: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to update staff member"}), 500
        return jsonify(staff.to_dict())

    @app.route("/api/staff/<int:staff_id>", methods=["DELETE"])
    @admin_required
    def api_deactivate_staff(staff_id):
        staff = db.session.get(Staff, staff_id)
        if staff is None:
            return jsonify({"error": "Staff member not found"}), 404
        if staff.id == current_user.id:
            return jsonify({"error": "You cannot deactivate your own account"}), 400
        StaffService.deactivate(staff)
        return jsonify({"message": "Staff member deactivated", "staff": staff.to_dict()})
