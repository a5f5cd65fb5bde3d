# config/base.py
import os
from datetime import timedelta


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` on bad input and
    clamping into the optional bounds.
    """
    if value is None or str(value).strip() == "":
        number = default
    else:
        try:
            number = int(str(value).strip())
        except ValueError:
            number = default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def _coerce_float(value, default, *, minimum=0.0):
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(str(value).strip())
    except ValueError:
        return default
    return max(minimum, number)


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Payment processor API. Credentials have no defaults; the client refuses
    # to start without either a token or an access/secret key pair.
    PAYMENT_API_BASE_URL = os.environ.get("PAYMENT_API_BASE_URL")
    PAYMENT_API_SEARCH_PATH = os.environ.get("PAYMENT_API_SEARCH_PATH", "/transaction/gift/search")
    PAYMENT_API_TOKEN = os.environ.get("PAYMENT_API_TOKEN")
    PAYMENT_API_PRIVATE_TOKEN = os.environ.get("PAYMENT_API_PRIVATE_TOKEN")
    PAYMENT_API_ACCESS_KEY_ID = os.environ.get("PAYMENT_API_ACCESS_KEY_ID")
    PAYMENT_API_SECRET_ACCESS_KEY = os.environ.get("PAYMENT_API_SECRET_ACCESS_KEY")
    PAYMENT_API_SESSION_TOKEN = os.environ.get("PAYMENT_API_SESSION_TOKEN")
    PAYMENT_API_SIGNING_REGION = os.environ.get("PAYMENT_API_SIGNING_REGION", "us-east-1")
    PAYMENT_API_SIGNING_SERVICE = os.environ.get("PAYMENT_API_SIGNING_SERVICE", "execute-api")
    PAYMENT_API_TIMEOUT_SECONDS = _coerce_float(os.environ.get("PAYMENT_API_TIMEOUT_SECONDS"), 30.0, minimum=1.0)
    PAYMENT_API_PAGE_DELAY_SECONDS = _coerce_float(os.environ.get("PAYMENT_API_PAGE_DELAY_SECONDS"), 0.1)

    # Transaction sync
    SYNC_JOB_NAME = os.environ.get("SYNC_JOB_NAME", "payment_transactions")
    SYNC_PAGE_SIZE = _coerce_int(os.environ.get("SYNC_PAGE_SIZE"), 100, minimum=1, maximum=500)
    SYNC_MAX_PAGES = _coerce_int(os.environ.get("SYNC_MAX_PAGES"), 100, minimum=1)
    SYNC_DEFAULT_LOOKBACK_DAYS = _coerce_int(os.environ.get("SYNC_DEFAULT_LOOKBACK_DAYS"), 7, minimum=1)
    SYNC_OVERLAP_DAYS = _coerce_int(os.environ.get("SYNC_OVERLAP_DAYS"), 1, minimum=0)
    SYNC_RUN_TIMEOUT_SECONDS = _coerce_int(os.environ.get("SYNC_RUN_TIMEOUT_SECONDS"), 30 * 60, minimum=10)
    SYNC_SCHEDULER_ENABLED = _coerce_bool(os.environ.get("SYNC_SCHEDULER_ENABLED"), default=False)
    SYNC_TRIGGER_MODE = os.environ.get("SYNC_TRIGGER_MODE", "background").strip().lower()
    SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False)

    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # One-time login codes
    OTP_CODE_TTL_MINUTES = _coerce_int(os.environ.get("OTP_CODE_TTL_MINUTES"), 10, minimum=1, maximum=60)
    OTP_MAX_ATTEMPTS = _coerce_int(os.environ.get("OTP_MAX_ATTEMPTS"), 5, minimum=1)

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "giftline_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    SYNC_SCHEDULER_ENABLED = False
    SYNC_WORKER_ENABLED = False
    SYNC_TRIGGER_MODE = "inline"
    PAYMENT_API_PAGE_DELAY_SECONDS = 0.0


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
