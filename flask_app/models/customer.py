# flask_app/models/customer.py

import enum
import uuid

from flask import current_app
from sqlalchemy import Index, case, func
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db, isoformat_or_none


class CustomerType(str, enum.Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"
    INACTIVE = "inactive"


# Contact/address columns that sync may fill in but never overwrite.
CONTACT_FIELDS = (
    "email",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "country",
)


def _new_customer_id() -> str:
    return str(uuid.uuid4())


class Customer(BaseModel):
    """A donor known to the payment processor."""

    __tablename__ = "customers"

    id = db.Column(db.String(36), primary_key=True, default=_new_customer_id)
    external_customer_id = db.Column(db.String(255), unique=True, nullable=False, index=True)

    first_name = db.Column(db.String(100), nullable=False, index=True)
    last_name = db.Column(db.String(100), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(50), nullable=True)

    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(100), nullable=True)

    customer_type = db.Column(db.String(20), nullable=False, default=CustomerType.ONE_TIME.value, index=True)
    total_donated = db.Column(db.Integer, nullable=False, default=0)  # minor units
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    transactions = db.relationship("Transaction", back_populates="customer", lazy="dynamic")

    __table_args__ = (Index("idx_customer_name", "first_name", "last_name"),)

    def __repr__(self):
        return f"<Customer {self.first_name} {self.last_name} ({self.external_customer_id})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @staticmethod
    def find_by_external_id(external_customer_id):
        """Find customer by processor-issued id with error handling"""
        try:
            return Customer.query.filter_by(external_customer_id=external_customer_id).first()
        except SQLAlchemyError as e:
            current_app.logger.error(
                f"Database error finding customer by external id {external_customer_id}: {str(e)}"
            )
            return None

    @staticmethod
    def find_by_email(email):
        """Find customer by email, ignoring case and surrounding whitespace"""
        if not email:
            return None
        return (
            Customer.query.filter(func.lower(Customer.email) == email.strip().lower())
            .order_by(Customer.created_at)
            .first()
        )

    @staticmethod
    def find_by_name(first_name, last_name):
        """
        Find a customer with exactly this first+last name and no email on file.
        Customers with an email are only ever matched by email.
        """
        return (
            Customer.query.filter(
                func.lower(Customer.first_name) == first_name.strip().lower(),
                func.lower(Customer.last_name) == last_name.strip().lower(),
                Customer.email.is_(None),
            )
            .order_by(Customer.created_at)
            .first()
        )

    def fill_missing_contact(self, values):
        """
        Copy contact/address values onto columns that are still empty.

        Returns the list of column names that changed.
        """
        changed = []
        for field in CONTACT_FIELDS:
            incoming = values.get(field)
            if incoming in (None, ""):
                continue
            if getattr(self, field) in (None, ""):
                setattr(self, field, incoming)
                changed.append(field)
        return changed

    def refresh_totals(self):
        """Recompute donation totals and classification from stored transactions."""
        from .transaction import SETTLED_STATUS, Transaction

        count, settled_total, subscriptions = (
            db.session.query(
                func.count(Transaction.id),
                func.coalesce(
                    func.sum(case((Transaction.status == SETTLED_STATUS, Transaction.amount), else_=0)),
                    0,
                ),
                func.count(Transaction.subscription_id),
            )
            .filter(Transaction.customer_id == self.id)
            .one()
        )
        self.transaction_count = int(count or 0)
        self.total_donated = int(settled_total or 0)
        if self.customer_type != CustomerType.INACTIVE.value:
            self.customer_type = (
                CustomerType.RECURRING.value if subscriptions else CustomerType.ONE_TIME.value
            )

    def to_dict(self):
        return {
            "id": self.id,
            "externalCustomerId": self.external_customer_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "street1": self.address_line1,
            "street2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
            "customerType": self.customer_type,
            "totalDonated": self.total_donated,
            "transactionCount": self.transaction_count,
            "lastSyncAt": isoformat_or_none(self.last_sync_at),
            "createdAt": isoformat_or_none(self.created_at),
            "updatedAt": isoformat_or_none(self.updated_at),
        }
