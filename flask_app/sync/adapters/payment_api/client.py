"""
Paginated transaction search against the payment processor.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, List, Mapping, Sequence

import requests

from . import PaymentApiResponseError, PaymentApiSettings, load_payment_api_settings
from .auth import ApiRequest, AuthChain, AuthStrategy, build_auth_strategies
from .normalize import PaymentTransaction, RecordNormalizationError, normalize_transaction

RECORD_LIST_KEYS: Sequence[str] = ("transactions", "data", "results", "items", "records")


@dataclass(frozen=True)
class TransactionPage:
    """One page of search results, already normalized."""

    page: int
    page_size: int
    transactions: List[PaymentTransaction]
    rejected: List[dict] = field(default_factory=list)
    total_count: int | None = None
    total_pages: int | None = None
    has_more: bool | None = None

    @property
    def record_count(self) -> int:
        """Records the processor returned, including ones that failed to normalize."""
        return len(self.transactions) + len(self.rejected)


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    return None


def extract_records(payload: Any) -> tuple[list, Mapping[str, Any]]:
    """
    Split a search response into (records, metadata).

    Accepts a bare list, ``{"transactions": [...], "hasMore": ...}``, and
    ``{"data": [...], "totalCount": ..., "totalPages": ...}``, including one
    level of ``data`` nesting.
    """
    if isinstance(payload, list):
        return payload, {}
    if not isinstance(payload, Mapping):
        raise PaymentApiResponseError(f"Unexpected payment API response type: {type(payload).__name__}")

    for key in RECORD_LIST_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return value, payload
    nested = payload.get("data")
    if isinstance(nested, Mapping):
        records, meta = extract_records(nested)
        return records, {**payload, **meta}
    raise PaymentApiResponseError(
        "Payment API response did not contain a transaction list "
        f"(keys: {', '.join(sorted(str(key) for key in payload.keys())) or 'none'})"
    )


class PaymentApiClient:
    """Fetch transaction pages with automatic authentication fallback."""

    def __init__(
        self,
        settings: PaymentApiSettings,
        *,
        session: requests.Session | None = None,
        strategies: Sequence[AuthStrategy] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self.auth = AuthChain(strategies or build_auth_strategies(settings), logger=self.logger)

    # Public API -----------------------------------------------------------------

    def fetch_page(self, start_date: date, end_date: date, *, page: int = 1, page_size: int = 100) -> TransactionPage:
        """Fetch and normalize one page of transactions created within [start_date, end_date]."""

        page = max(1, int(page))
        page_size = max(1, int(page_size))
        request = self._build_request(start_date, end_date, page=page, page_size=page_size)
        response = self.auth.send(self.session, request, timeout=self.settings.timeout_seconds)

        try:
            payload = response.json()
        except ValueError as exc:
            snippet = (getattr(response, "text", "") or "")[:200]
            raise PaymentApiResponseError(f"Payment API returned non-JSON response: {snippet!r}") from exc

        records, meta = extract_records(payload)
        transactions: list[PaymentTransaction] = []
        rejected: list[dict] = []
        for position, raw in enumerate(records):
            try:
                transactions.append(normalize_transaction(raw))
            except RecordNormalizationError as exc:
                record_id = exc.record_id or f"page{page}#{position + 1}"
                rejected.append({"transactionId": record_id, "error": str(exc)})

        result = TransactionPage(
            page=page,
            page_size=page_size,
            transactions=transactions,
            rejected=rejected,
            total_count=_as_int(meta.get("totalCount", meta.get("total"))),
            total_pages=_as_int(meta.get("totalPages")),
            has_more=_as_bool(meta.get("hasMore")),
        )
        self.logger.debug(
            "Fetched payment API page %s",
            page,
            extra={
                "sync_page": page,
                "sync_page_records": result.record_count,
                "sync_page_rejected": len(rejected),
                "sync_total_pages": result.total_pages,
            },
        )
        return result

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "PaymentApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Internal helpers -----------------------------------------------------------

    def _build_request(self, start_date: date, end_date: date, *, page: int, page_size: int) -> ApiRequest:
        body = {
            "createdAt": {
                "startDate": start_date.isoformat(),
                "endDate": end_date.isoformat(),
            },
            "page": page,
            "limit": page_size,
            "offset": (page - 1) * page_size,
        }
        return ApiRequest(
            url=self.settings.search_url,
            body=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )


def create_payment_api_client(config: Mapping[str, Any], *, logger: logging.Logger | None = None) -> PaymentApiClient:
    """Build a client from Flask config, failing fast when credentials are absent."""

    settings = load_payment_api_settings(config)
    return PaymentApiClient(settings, logger=logger)
