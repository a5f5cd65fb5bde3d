# conftest.py

import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

# Set testing environment BEFORE importing app to prevent database corruption
# This ensures app.py uses TestingConfig when imported
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app
from flask_app.models import Customer, Staff, StaffRole, Transaction, db
from flask_app.sync import init_sync
from flask_app.sync.adapters.payment_api.client import TransactionPage
from flask_app.sync.adapters.payment_api.normalize import RecordNormalizationError, normalize_transaction
from flask_app.sync.runner import SyncRunner


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "MAIL_SERVER": None,
            "SYNC_TRIGGER_MODE": "inline",
            "SYNC_WORKER_ENABLED": False,
            "SYNC_PAGE_SIZE": 100,
            "SYNC_MAX_PAGES": 100,
            "PAYMENT_API_PAGE_DELAY_SECONDS": 0.0,
            "PAYMENT_API_BASE_URL": None,
            "PAYMENT_API_TOKEN": None,
            "PAYMENT_API_PRIVATE_TOKEN": None,
            "PAYMENT_API_ACCESS_KEY_ID": None,
            "PAYMENT_API_SECRET_ACCESS_KEY": None,
        }
    )

    # Fresh runner per test so single-flight locks never leak between tests
    state = init_sync(flask_app, runner=SyncRunner(flask_app, sleep_fn=lambda seconds: None))
    state["scheduler"] = None
    state["celery_app"] = None

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        # Clean up: remove all data and drop tables
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def staff_member(app):
    """Create an active, non-admin staff member"""
    staff = Staff(
        email="staff@example.org",
        first_name="Sam",
        last_name="Staffer",
        role=StaffRole.STAFF,
        is_active=True,
    )
    db.session.add(staff)
    db.session.commit()
    return staff


@pytest.fixture
def admin_staff(app):
    """Create an active admin staff member"""
    staff = Staff(
        email="admin@example.org",
        first_name="Ada",
        last_name="Admin",
        role=StaffRole.ADMIN,
        is_active=True,
    )
    db.session.add(staff)
    db.session.commit()
    return staff


def _login(client, staff):
    with client.session_transaction() as session:
        session["_user_id"] = str(staff.id)
        session["_fresh"] = True
    return client


@pytest.fixture
def logged_in_staff(client, staff_member):
    """Client with a signed-in non-admin staff session"""
    return _login(client, staff_member), staff_member


@pytest.fixture
def logged_in_admin(client, admin_staff):
    """Client with a signed-in admin session"""
    return _login(client, admin_staff), admin_staff


def make_raw_transaction(number, **overrides):
    """Processor-shaped record in the ``billingAddress`` layout."""
    record = {
        "id": f"txn-{number:04d}",
        "customerId": f"cust-{number:04d}",
        "amount": 2500,
        "status": "SETTLED",
        "type": "SALE",
        "kind": "DONATION",
        "currency": "USD",
        "createdAt": "2024-03-01T12:00:00Z",
        "billingAddress": {
            "firstName": f"Donor{number}",
            "lastName": "Example",
            "email": f"donor{number}@example.org",
        },
    }
    record.update(overrides)
    return record


class FakePaymentClient:
    """
    Stand-in for ``PaymentApiClient`` serving pre-built pages.

    ``pages`` items are lists of raw records or exceptions to raise. Requests
    past the end return an empty page. ``repeat_last`` keeps serving the final
    page forever.
    """

    def __init__(self, pages, *, repeat_last=False):
        self.pages = list(pages)
        self.repeat_last = repeat_last
        self.calls = []
        self.closed = False

    def fetch_page(self, start_date, end_date, *, page=1, page_size=100):
        self.calls.append({"start_date": start_date, "end_date": end_date, "page": page, "page_size": page_size})
        if page <= len(self.pages):
            item = self.pages[page - 1]
        elif self.repeat_last and self.pages:
            item = self.pages[-1]
        else:
            item = []
        if isinstance(item, Exception):
            raise item
        transactions, rejected = [], []
        for raw in item:
            try:
                transactions.append(normalize_transaction(raw))
            except RecordNormalizationError as exc:
                rejected.append({"transactionId": exc.record_id or "unknown", "error": str(exc)})
        return TransactionPage(page=page, page_size=page_size, transactions=transactions, rejected=rejected)

    def close(self):
        self.closed = True


@pytest.fixture
def make_transaction():
    return make_raw_transaction


@pytest.fixture
def payment_client_class():
    return FakePaymentClient


@pytest.fixture
def install_payment_client(app):
    """Route the app's sync runner to a ``FakePaymentClient`` built from ``pages``."""

    def _install(pages, **kwargs):
        fake = FakePaymentClient(pages, **kwargs)
        app.extensions["sync"]["runner"].client_factory = lambda config, logger: fake
        return fake

    return _install


@pytest.fixture
def sample_customer(app):
    customer = Customer(
        external_customer_id="cust-sample",
        first_name="Grace",
        last_name="Giver",
        email="grace@example.org",
    )
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def sample_transactions(app, sample_customer):
    """Two settled gifts and one pending gift for ``sample_customer``"""
    rows = [
        Transaction(
            id="txn-a",
            customer_id=sample_customer.id,
            external_customer_id="cust-sample",
            amount=5000,
            status="SETTLED",
            email_address="grace@example.org",
            description="Spring appeal",
            processor_created_at=datetime(2024, 3, 2, tzinfo=timezone.utc),
        ),
        Transaction(
            id="txn-b",
            customer_id=sample_customer.id,
            external_customer_id="cust-sample",
            amount=2500,
            status="SETTLED",
            subscription_id="sub-1",
            email_address="grace@example.org",
            processor_created_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
        ),
        Transaction(
            id="txn-c",
            customer_id=sample_customer.id,
            external_customer_id="cust-sample",
            amount=1000,
            status="PENDING",
            email_address="grace@example.org",
            processor_created_at=datetime(2024, 4, 1, tzinfo=timezone.utc),
        ),
    ]
    db.session.add_all(rows)
    db.session.flush()
    sample_customer.refresh_totals()
    db.session.commit()
    return rows


@pytest.fixture
def mock_send_email():
    """Capture outbound login-code emails"""
    with patch("flask_app.routes.auth.send_login_code") as mock_send:
        mock_send.return_value = True
        yield mock_send


def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
