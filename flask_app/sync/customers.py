"""
Resolve the local donor for an incoming processor transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy.orm import Session

from flask_app.models import Customer, db
from flask_app.models.base import utc_now

from .adapters.payment_api.normalize import PaymentTransaction, synthetic_customer_id

ResolveAction = Literal["created", "updated", "matched"]


@dataclass(frozen=True)
class CustomerResolution:
    customer: Customer
    action: ResolveAction
    matched_by: str | None = None
    filled_fields: tuple[str, ...] = ()


class CustomerResolver:
    """
    Match by email when the record has one, otherwise by exact first+last name
    among customers without an email. The processor customer id is only a
    last-resort guard so a renamed donor never trips the unique constraint.
    """

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    def resolve(self, transaction: PaymentTransaction, *, now: datetime | None = None) -> CustomerResolution | None:
        billing = transaction.billing
        if not billing.has_identity:
            return None
        now = now or utc_now()

        customer, matched_by = self._find_existing(transaction)
        if customer is None:
            customer = self._create(transaction, now=now)
            return CustomerResolution(customer=customer, action="created")

        filled = customer.fill_missing_contact(billing.contact_fields())
        customer.last_sync_at = now
        return CustomerResolution(
            customer=customer,
            action="updated" if filled else "matched",
            matched_by=matched_by,
            filled_fields=tuple(filled),
        )

    def _find_existing(self, transaction: PaymentTransaction) -> tuple[Customer | None, str | None]:
        billing = transaction.billing
        if billing.email:
            customer = Customer.find_by_email(billing.email)
            if customer is not None:
                return customer, "email"
        else:
            customer = Customer.find_by_name(billing.first_name, billing.last_name)
            if customer is not None:
                return customer, "name"

        if transaction.external_customer_id:
            customer = (
                self.session.query(Customer)
                .filter(Customer.external_customer_id == transaction.external_customer_id)
                .first()
            )
            if customer is not None:
                return customer, "external_id"
        return None, None

    def _create(self, transaction: PaymentTransaction, *, now: datetime) -> Customer:
        billing = transaction.billing
        external_id = transaction.external_customer_id or synthetic_customer_id(
            billing.first_name, billing.last_name, billing.email
        )
        customer = Customer(
            external_customer_id=external_id,
            first_name=billing.first_name,
            last_name=billing.last_name,
            last_sync_at=now,
            **billing.contact_fields(),
        )
        self.session.add(customer)
        self.session.flush()
        return customer
