"""
Map processor-native transaction records onto one canonical shape.

The processor has returned the same logical record with different key casing
and nesting depending on endpoint version. Everything downstream of this
module only ever sees ``PaymentTransaction``.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from hashlib import sha256
from typing import Any, Mapping

_WHITESPACE_RE = re.compile(r"\s+")


class RecordNormalizationError(ValueError):
    """Raised when a raw record cannot be mapped (for example, it has no id)."""

    def __init__(self, message: str, *, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id


@dataclass(frozen=True)
class BillingContact:
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None

    @property
    def has_identity(self) -> bool:
        return bool(self.first_name and self.last_name)

    def contact_fields(self) -> dict[str, str | None]:
        return {
            "email": self.email,
            "phone": self.phone,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }


@dataclass(frozen=True)
class PaymentTransaction:
    id: str
    external_customer_id: str | None
    amount: int
    billing: BillingContact = field(default_factory=BillingContact)
    type: str | None = None
    kind: str | None = None
    currency: str | None = None
    status: str | None = None
    email_address: str | None = None
    payment_method: str | None = None
    response_code: str | None = None
    response_message: str | None = None
    subscription_id: str | None = None
    settlement_batch_id: str | None = None
    billing_address: dict | None = None
    shipping_address: dict | None = None
    ip_address: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    settled_at: datetime | None = None
    raw: dict = field(default_factory=dict, compare=False)

    def checksum(self) -> str:
        """Stable hash of the stored fields, used to tell changed records from re-observed ones."""
        payload = asdict(self)
        payload.pop("raw", None)
        encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
        return sha256(encoded.encode("utf-8")).hexdigest()


def _pick(source: Mapping[str, Any] | None, *keys: str) -> Any:
    if not source:
        return None
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _minor_units(value: Any, *, scale: int) -> int:
    try:
        amount = Decimal(str(value).strip()) * scale
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount {value!r}") from exc
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_amount(record: Mapping[str, Any]) -> int:
    """
    Return the amount in minor units. ``amount`` is already in cents; the
    ``totalAmount`` variant is expressed in whole currency units.
    """
    cents = _pick(record, "amount", "amountInCents", "amount_cents")
    if cents is not None:
        return _minor_units(cents, scale=1)
    dollars = _pick(record, "totalAmount", "total_amount")
    if dollars is not None:
        return _minor_units(dollars, scale=100)
    return 0


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (with or without ``Z``) and epoch seconds/milliseconds."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10**11 else value
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _billing_contact(record: Mapping[str, Any]) -> tuple[BillingContact, dict | None]:
    address = record.get("billingAddress") or record.get("billing_address")
    if not isinstance(address, Mapping):
        address = None
    customer = record.get("customer") if isinstance(record.get("customer"), Mapping) else None

    def pick(*keys: str) -> str | None:
        return _text(_pick(address, *keys) or _pick(customer, *keys))

    contact = BillingContact(
        first_name=pick("firstName", "first_name") or _text(_pick(record, "customerFirstName", "firstName")),
        last_name=pick("lastName", "last_name") or _text(_pick(record, "customerLastName", "lastName")),
        email=pick("email", "emailAddress")
        or _text(_pick(record, "customerEmail", "emailAddress", "email")),
        phone=pick("phone", "phoneNumber") or _text(_pick(record, "customerPhone")),
        address_line1=pick("street1", "address1", "line1"),
        address_line2=pick("street2", "address2", "line2"),
        city=pick("city"),
        state=pick("state", "region"),
        postal_code=pick("postalCode", "postal_code", "zip"),
        country=pick("country"),
    )
    if contact.email:
        contact = BillingContact(**{**asdict(contact), "email": contact.email.lower()})
    return contact, dict(address) if address is not None else None


def synthetic_customer_id(first_name: str, last_name: str, email: str | None) -> str:
    """Derive a stable customer key for records that carry no processor customer id."""
    raw = f"{first_name}_{last_name}_{email or 'no-email'}".lower()
    return _WHITESPACE_RE.sub("-", raw.strip())


def _payment_method(value: Any) -> str | None:
    if isinstance(value, Mapping):
        display = _text(_pick(value, "displayName", "display_name", "description"))
        if display:
            return display
        method_type = _text(_pick(value, "type", "currencyType", "cardType"))
        last4 = _text(_pick(value, "last4", "lastFour"))
        if method_type and last4:
            return f"{method_type} ****{last4}"
        return method_type or last4
    return _text(value)


def normalize_transaction(record: Mapping[str, Any]) -> PaymentTransaction:
    """Map one raw processor record to ``PaymentTransaction``."""

    if not isinstance(record, Mapping):
        raise RecordNormalizationError(f"Expected an object, got {type(record).__name__}")

    record_id = _text(_pick(record, "id", "transactionId", "transaction_id"))
    if not record_id:
        raise RecordNormalizationError("Transaction record has no id")

    try:
        billing, billing_address = _billing_contact(record)
        customer = record.get("customer") if isinstance(record.get("customer"), Mapping) else None
        external_customer_id = _text(
            _pick(record, "customerId", "externalCustomerId", "customer_id") or _pick(customer, "id")
        )
        if external_customer_id is None and billing.has_identity:
            external_customer_id = synthetic_customer_id(billing.first_name, billing.last_name, billing.email)

        shipping = record.get("shippingAddress") or record.get("shipping_address")
        status = _text(_pick(record, "status", "transactionStatus"))
        response_body = record.get("responseBody")
        if response_body is not None and not isinstance(response_body, (dict, list)):
            response_body = {"value": response_body}

        return PaymentTransaction(
            id=record_id,
            external_customer_id=external_customer_id,
            amount=parse_amount(record),
            billing=billing,
            type=_text(_pick(record, "type", "transactionType")),
            kind=_text(_pick(record, "kind")),
            currency=_text(_pick(record, "currency", "currencyCode")),
            status=status.upper() if status else None,
            email_address=_text(_pick(record, "emailAddress", "email")) or billing.email,
            payment_method=_payment_method(record.get("paymentMethod") or record.get("payment_method")),
            response_code=_text(_pick(record, "responseCode", "response_code")),
            response_message=_text(_pick(record, "responseMessage", "response_message")),
            subscription_id=_text(_pick(record, "subscriptionId", "subscription_id")),
            settlement_batch_id=_text(_pick(record, "settlementBatchId", "settlement_batch_id")),
            billing_address=billing_address,
            shipping_address=dict(shipping) if isinstance(shipping, Mapping) else None,
            ip_address=_text(_pick(record, "ipAddress", "ip_address")),
            description=_text(_pick(record, "description")),
            created_at=parse_timestamp(_pick(record, "createdAt", "created_at", "createdOn")),
            updated_at=parse_timestamp(_pick(record, "updatedAt", "updated_at", "modifiedOn")),
            settled_at=parse_timestamp(_pick(record, "settledAt", "settled_at")),
            raw=response_body if isinstance(response_body, dict) else dict(record),
        )
    except ValueError as exc:
        raise RecordNormalizationError(str(exc), record_id=record_id) from exc
