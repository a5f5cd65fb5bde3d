"""
Payment processor transactions mirrored into the local store.

Rows are keyed by the processor's own transaction id so that repeated syncs
update in place instead of duplicating.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, isoformat_or_none

SETTLED_STATUS = "SETTLED"
REFUNDED_STATUS = "REFUNDED"


class Transaction(BaseModel):
    """One processor transaction (a gift, refund, or failed attempt)."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(db.String(255), primary_key=True)
    external_customer_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    customer_id: Mapped[str | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )

    type: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    kind: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    amount: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)  # minor units
    currency: Mapped[str | None] = mapped_column(db.String(10), nullable=True)
    status: Mapped[str | None] = mapped_column(db.String(50), nullable=True, index=True)
    email_address: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    payment_method: Mapped[str | None] = mapped_column(db.String(255), nullable=True)

    response_body: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    response_code: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    response_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    subscription_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    settlement_batch_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    billing_address: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    processor_created_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), index=True)
    processor_updated_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    settled_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    synced_at: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True),
        comment="When the local copy was last refreshed from the processor.",
    )
    payload_checksum: Mapped[str | None] = mapped_column(db.String(64), nullable=True)

    refunded_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    refund_amount: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    customer = relationship("Customer", back_populates="transactions")

    __table_args__ = (Index("idx_transaction_status_created", "status", "processor_created_at"),)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.status} {self.amount}>"

    @property
    def is_refunded(self) -> bool:
        return self.status == REFUNDED_STATUS

    def to_dict(self, *, include_customer: bool = False, include_raw: bool = False) -> dict:
        payload = {
            "id": self.id,
            "externalCustomerId": self.external_customer_id,
            "customerId": self.customer_id,
            "type": self.type,
            "kind": self.kind,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "emailAddress": self.email_address,
            "paymentMethod": self.payment_method,
            "responseCode": self.response_code,
            "responseMessage": self.response_message,
            "subscriptionId": self.subscription_id,
            "settlementBatchId": self.settlement_batch_id,
            "billingAddress": self.billing_address,
            "shippingAddress": self.shipping_address,
            "ipAddress": self.ip_address,
            "description": self.description,
            "createdAt": isoformat_or_none(self.processor_created_at),
            "updatedAt": isoformat_or_none(self.processor_updated_at),
            "settledAt": isoformat_or_none(self.settled_at),
            "syncedAt": isoformat_or_none(self.synced_at),
            "refundedAt": isoformat_or_none(self.refunded_at),
            "refundAmount": self.refund_amount,
            "refundReason": self.refund_reason,
        }
        if include_raw:
            payload["responseBody"] = self.response_body
        if include_customer:
            customer = self.customer
            payload["customer"] = (
                {
                    "id": customer.id,
                    "firstName": customer.first_name,
                    "lastName": customer.last_name,
                    "email": customer.email,
                }
                if customer is not None
                else None
            )
        return payload
