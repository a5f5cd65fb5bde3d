# flask_app/utils/email.py
"""
Outbound email for staff sign-in codes.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app


def send_email(to_address, subject, body):
    """
    Send a plain-text email via the configured SMTP server.

    Returns True when the message was handed to the server, False when mail is
    not configured or delivery failed (failures are logged, never raised).
    """
    mail_server = current_app.config.get("MAIL_SERVER")
    if not mail_server:
        current_app.logger.warning(
            "MAIL_SERVER not configured; email not sent", extra={"mail_subject": subject}
        )
        return False

    message = MIMEMultipart()
    message["From"] = current_app.config.get("MAIL_FROM", "noreply@example.com")
    message["To"] = to_address
    message["Subject"] = subject
    message.attach(MIMEText(body, "plain"))

    try:
        server = smtplib.SMTP(mail_server, current_app.config.get("MAIL_PORT", 587), timeout=10)
        try:
            if current_app.config.get("MAIL_USE_TLS", True):
                server.starttls()
            username = current_app.config.get("MAIL_USERNAME")
            password = current_app.config.get("MAIL_PASSWORD")
            if username and password:
                server.login(username, password)
            server.send_message(message)
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as e:
        current_app.logger.error(f"Failed to send email: {str(e)}", extra={"mail_subject": subject})
        return False

    current_app.logger.info("Email sent", extra={"mail_subject": subject})
    return True


def send_login_code(to_address, code, ttl_minutes):
    app_name = current_app.config.get("APP_NAME", "Giftline")
    body = (
        f"Your {app_name} verification code is {code}.\n\n"
        f"This code will expire in {ttl_minutes} minutes. "
        "If you did not request it, you can ignore this email."
    )
    return send_email(to_address, f"Your {app_name} login verification code", body)
