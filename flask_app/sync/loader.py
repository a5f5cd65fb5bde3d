"""
Upsert processor transactions keyed on the processor's transaction id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy.orm import Session

from flask_app.models import Customer, Transaction, db
from flask_app.models.base import utc_now

from .adapters.payment_api.normalize import PaymentTransaction

UpsertAction = Literal["created", "updated", "unchanged"]


@dataclass
class LoaderCounters:
    created: int = 0
    updated: int = 0
    unchanged: int = 0

    def record(self, action: UpsertAction) -> None:
        setattr(self, action, getattr(self, action) + 1)

    @property
    def changed(self) -> int:
        """Rows inserted or whose stored content changed."""
        return self.created + self.updated

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
        }


class TransactionLoader:
    """
    Writes every observed field over the stored row and stamps ``synced_at``.

    The payload checksum only decides how the write is counted; the row is
    always refreshed so the processor stays the source of truth.
    """

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    def upsert(
        self,
        transaction: PaymentTransaction,
        *,
        customer_id: str | None = None,
        now: datetime | None = None,
    ) -> UpsertAction:
        now = now or utc_now()
        checksum = transaction.checksum()
        row = self.session.get(Transaction, transaction.id)

        if row is None:
            row = Transaction(id=transaction.id)
            self.session.add(row)
            action: UpsertAction = "created"
            previous_customer_id = None
        else:
            unchanged = (
                row.payload_checksum == checksum
                and row.customer_id == customer_id
                and row.status == transaction.status
            )
            action = "unchanged" if unchanged else "updated"
            previous_customer_id = row.customer_id

        self._apply(row, transaction, customer_id=customer_id, checksum=checksum, now=now)
        self.session.flush()

        for affected_id in {customer_id, previous_customer_id} - {None}:
            customer = self.session.get(Customer, affected_id)
            if customer is not None:
                customer.refresh_totals()
        return action

    @staticmethod
    def _apply(
        row: Transaction,
        transaction: PaymentTransaction,
        *,
        customer_id: str | None,
        checksum: str,
        now: datetime,
    ) -> None:
        row.external_customer_id = transaction.external_customer_id
        row.customer_id = customer_id
        row.type = transaction.type
        row.kind = transaction.kind
        row.amount = transaction.amount
        row.currency = transaction.currency
        row.status = transaction.status
        row.email_address = transaction.email_address
        row.payment_method = transaction.payment_method
        row.response_body = transaction.raw
        row.response_code = transaction.response_code
        row.response_message = transaction.response_message
        row.subscription_id = transaction.subscription_id
        row.settlement_batch_id = transaction.settlement_batch_id
        row.billing_address = transaction.billing_address
        row.shipping_address = transaction.shipping_address
        row.ip_address = transaction.ip_address
        row.description = transaction.description
        row.processor_created_at = transaction.created_at
        row.processor_updated_at = transaction.updated_at
        row.settled_at = transaction.settled_at
        row.payload_checksum = checksum
        row.synced_at = now
