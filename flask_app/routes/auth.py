# flask_app/routes/auth.py

"""
Staff sign-in with emailed one-time codes
"""

from email_validator import EmailNotValidError, validate_email
from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from flask_app.models import OtpCode, Staff, db
from flask_app.models.base import utc_now
from flask_app.utils.email import send_login_code

CODE_SENT_MESSAGE = "If that email belongs to an active staff account, a verification code has been sent"


def _normalized_email(payload):
    email = payload.get("email") if isinstance(payload, dict) else None
    if not isinstance(email, str) or not email.strip():
        return None, "Email is required"
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return None, "Invalid email format"
    return email.strip().lower(), None


def register_auth_routes(app):
    """Register authentication routes"""

    @app.route("/api/auth/send-otp", methods=["POST"])
    def api_send_otp():
        """
        Issue a one-time code to an active staff member. The response is the
        same whether or not the email is known.
        """
        email, error = _normalized_email(request.get_json(silent=True) or {})
        if error:
            return jsonify({"error": error}), 400

        staff = Staff.find_by_email(email)
        if staff is None or not staff.is_active:
            current_app.logger.info("Login code requested for unknown or inactive staff email")
            return jsonify({"message": CODE_SENT_MESSAGE})

        ttl_minutes = current_app.config.get("OTP_CODE_TTL_MINUTES", 10)
        try:
            _, code = OtpCode.issue(email, ttl_minutes=ttl_minutes)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error issuing login code: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to send verification code"}), 500

        send_login_code(email, code, ttl_minutes)
        current_app.logger.info("Login code issued", extra={"staff_id": staff.id})
        return jsonify({"message": CODE_SENT_MESSAGE})

    @app.route("/api/auth/verify-otp", methods=["POST"])
    def api_verify_otp():
        payload = request.get_json(silent=True) or {}
        email, error = _normalized_email(payload)
        code = (payload.get("code") or payload.get("otp")) if isinstance(payload, dict) else None
        if error or not isinstance(code, str) or not code.strip():
            return jsonify({"error": "Email and verification code are required"}), 400

        staff = Staff.find_by_email(email)
        record = OtpCode.latest_for(email)
        max_attempts = current_app.config.get("OTP_MAX_ATTEMPTS", 5)
        if record is None or staff is None or not staff.is_active:
            return jsonify({"error": "Invalid or expired verification code"}), 401

        try:
            verified = record.check(code, max_attempts=max_attempts)
            if verified:
                staff.last_login_at = utc_now()
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error verifying login code: {str(e)}", exc_info=True)
            return jsonify({"error": "Failed to verify code"}), 500

        if not verified:
            current_app.logger.warning(
                "Login code rejected", extra={"staff_id": staff.id, "otp_attempts": record.attempts}
            )
            return jsonify({"error": "Invalid or expired verification code"}), 401

        login_user(staff, remember=True)
        current_app.logger.info("Staff signed in", extra={"staff_id": staff.id})
        return jsonify({"message": "Authentication successful", "user": staff.to_dict()})

    @app.route("/api/auth/logout", methods=["POST"])
    def api_logout():
        if current_user.is_authenticated:
            current_app.logger.info("Staff signed out", extra={"staff_id": current_user.id})
        logout_user()
        return jsonify({"message": "Logged out successfully"})

    @app.route("/api/auth/me", methods=["GET"])
    @login_required
    def api_me():
        return jsonify({"user": current_user.to_dict()})
