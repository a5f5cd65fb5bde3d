# config/validation.py

"""
Environment variable validation for the Giftline application.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if not os.environ.get("PAYMENT_API_BASE_URL"):
        errors.append("PAYMENT_API_BASE_URL is required in production for transaction sync.")

    has_token = bool(os.environ.get("PAYMENT_API_TOKEN") or os.environ.get("PAYMENT_API_PRIVATE_TOKEN"))
    access_key = os.environ.get("PAYMENT_API_ACCESS_KEY_ID")
    secret = os.environ.get("PAYMENT_API_SECRET_ACCESS_KEY")
    if bool(access_key) != bool(secret):
        errors.append("PAYMENT_API_ACCESS_KEY_ID and PAYMENT_API_SECRET_ACCESS_KEY must be set together.")
    if not has_token and not (access_key and secret):
        errors.append(
            "Payment API credentials are required in production: set PAYMENT_API_TOKEN "
            "(or PAYMENT_API_PRIVATE_TOKEN) or an access key pair."
        )

    trigger_mode = os.environ.get("SYNC_TRIGGER_MODE", "background").strip().lower()
    if trigger_mode not in {"background", "inline"}:
        errors.append("SYNC_TRIGGER_MODE must be 'background' or 'inline'.")

    if os.environ.get("SYNC_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when SYNC_WORKER_ENABLED=true")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
