"""
Transaction sync engine.

Pages through the payment API for a date range, resolves donors and upserts
transactions one record at a time, then records the outcome on the job's
``SyncConfig`` row. A bad record never aborts the batch; a failed page fetch
ends the page loop and the run is finalized with whatever was accumulated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, List

from sqlalchemy.orm import Session

from flask_app.models import SyncStatus, db
from flask_app.models.base import utc_now

from .adapters.payment_api import PaymentApiAuthError, PaymentApiError
from .adapters.payment_api.client import PaymentApiClient, TransactionPage
from .adapters.payment_api.normalize import PaymentTransaction
from .config_service import SyncConfigService
from .customers import CustomerResolver
from .loader import LoaderCounters, TransactionLoader
from .metrics import record_sync_page, record_sync_records, record_sync_run

MAX_REPORTED_ERRORS = 10


class SyncAlreadyRunning(RuntimeError):
    """Raised when a run is requested while another run holds the job."""

    def __init__(self, job_name: str):
        super().__init__(f"Sync job '{job_name}' is already running")
        self.job_name = job_name


class SyncTimeoutError(RuntimeError):
    """Raised inside the page loop once the run's wall-clock budget is spent."""


@dataclass
class SyncResult:
    job_name: str
    start_date: date
    end_date: date
    scheduled: bool = False
    status: str = SyncStatus.SUCCESS.value
    transactions_processed: int = 0
    total_retrieved: int = 0
    pages_processed: int = 0
    customers_created: int = 0
    customers_updated: int = 0
    counters: LoaderCounters = field(default_factory=LoaderCounters)
    errors: List[dict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    page_limit_reached: bool = False
    fetch_failed: bool = False
    fatal_error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_seconds: float = 0.0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def records_changed(self) -> int:
        return self.counters.changed

    @property
    def record_errors(self) -> List[dict]:
        return [error for error in self.errors if "transactionId" in error]

    def add_record_error(self, record_id: str, message: str, *, stage: str) -> None:
        self.errors.append({"transactionId": record_id, "stage": stage, "error": message})

    def add_page_error(self, page: int, message: str) -> None:
        self.errors.append({"page": page, "error": message})

    @property
    def error_summary(self) -> str | None:
        if self.status == SyncStatus.SUCCESS.value:
            return None
        if self.fatal_error:
            return self.fatal_error
        if not self.errors:
            return None
        first = self.errors[0]
        if self.status == SyncStatus.ERROR.value and "page" in first:
            return f"Failed to fetch page {first['page']}: {first['error']}"
        noun = "error" if self.error_count == 1 else "errors"
        return f"{self.error_count} {noun}; first: {first['error']}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "transactionsProcessed": self.transactions_processed,
            "totalTransactionsRetrieved": self.total_retrieved,
            "customersCreated": self.customers_created,
            "customersUpdated": self.customers_updated,
            "recordsCreated": self.counters.created,
            "recordsUpdated": self.counters.updated,
            "recordsUnchanged": self.counters.unchanged,
            "errors": self.errors[:MAX_REPORTED_ERRORS],
            "errorCount": self.error_count,
            "warnings": list(self.warnings),
            "pageLimitReached": self.page_limit_reached,
            "pagesProcessed": self.pages_processed,
            "dateRange": {
                "startDate": self.start_date.isoformat(),
                "endDate": self.end_date.isoformat(),
            },
            "scheduled": self.scheduled,
            "syncTime": self.finished_at.isoformat() if self.finished_at else None,
            "durationSeconds": round(self.duration_seconds, 3),
        }


class SyncEngine:
    """Drive one synchronization run to completion or to a stopping condition."""

    def __init__(
        self,
        client: PaymentApiClient,
        *,
        job_name: str,
        config_service: SyncConfigService | None = None,
        customer_resolver: CustomerResolver | None = None,
        loader: TransactionLoader | None = None,
        session: Session | None = None,
        page_size: int = 100,
        max_pages: int = 100,
        page_delay_seconds: float = 0.0,
        run_timeout_seconds: float = 30 * 60,
        sleep_fn: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.job_name = job_name
        self.session = session or db.session
        self.logger = logger or logging.getLogger(__name__)
        self.config_service = config_service or SyncConfigService(
            job_name, session=self.session, logger=self.logger, clock=clock
        )
        self.customer_resolver = customer_resolver or CustomerResolver(self.session)
        self.loader = loader or TransactionLoader(self.session)
        self.page_size = max(1, int(page_size))
        self.max_pages = max(1, int(max_pages))
        self.page_delay_seconds = max(0.0, float(page_delay_seconds))
        self.run_timeout_seconds = float(run_timeout_seconds)
        self.sleep = sleep_fn
        self.monotonic = monotonic
        self.clock = clock

    # Public API -----------------------------------------------------------------

    def run_scheduled(self) -> SyncResult:
        """Run over the implicit window derived from the last successful sync."""
        start_date, end_date = self.config_service.scheduled_range(today=self.clock().date())
        return self.run(start_date, end_date, scheduled=True)

    def run(self, start_date: date, end_date: date, *, scheduled: bool = False) -> SyncResult:
        if start_date > end_date:
            raise ValueError("start_date must be on or before end_date")

        stale_after = timedelta(seconds=self.run_timeout_seconds)
        if not self.config_service.try_claim(stale_after=stale_after):
            raise SyncAlreadyRunning(self.job_name)

        result = SyncResult(
            job_name=self.job_name,
            start_date=start_date,
            end_date=end_date,
            scheduled=scheduled,
            started_at=self.clock(),
        )
        started = self.monotonic()
        deadline = started + self.run_timeout_seconds
        self.logger.info(
            "Transaction sync started for %s..%s",
            start_date.isoformat(),
            end_date.isoformat(),
            extra={"sync_job": self.job_name, "sync_scheduled": scheduled},
        )

        recorded = None
        try:
            self._page_loop(result, start_date, end_date, deadline=deadline)
        except SyncTimeoutError as exc:
            self.session.rollback()
            result.fatal_error = str(exc)
            self.logger.error(str(exc), extra={"sync_job": self.job_name})
        except Exception as exc:
            self.session.rollback()
            result.fatal_error = f"Unexpected sync failure: {exc}"
            self.logger.error("Transaction sync aborted", exc_info=True, extra={"sync_job": self.job_name})
        finally:
            result.finished_at = self.clock()
            result.duration_seconds = self.monotonic() - started
            result.status = self._final_status(result)
            recorded = self.config_service.record_result(result)
            if recorded is None:
                self.config_service.release_claim()

        record_sync_run(result.status)
        record_sync_records(
            created=result.counters.created,
            updated=result.counters.updated,
            unchanged=result.counters.unchanged,
            failed=len(result.record_errors),
        )
        log = self.logger.warning if result.status != SyncStatus.SUCCESS.value else self.logger.info
        log(
            "Transaction sync finished with status %s",
            result.status,
            extra={
                "sync_job": self.job_name,
                "sync_status": result.status,
                "sync_pages": result.pages_processed,
                "sync_retrieved": result.total_retrieved,
                "sync_processed": result.transactions_processed,
                "sync_error_count": result.error_count,
                "sync_counters": result.counters.to_dict(),
            },
        )
        return result

    # Internal helpers -----------------------------------------------------------

    def _check_deadline(self, deadline: float) -> None:
        if self.monotonic() >= deadline:
            raise SyncTimeoutError(f"Sync timed out after {self.run_timeout_seconds:g} seconds")

    def _page_loop(self, result: SyncResult, start_date: date, end_date: date, *, deadline: float) -> None:
        page = 1
        while True:
            self._check_deadline(deadline)
            page_result = self._fetch(result, start_date, end_date, page)
            if page_result is None:
                return
            result.pages_processed += 1
            if page_result.record_count == 0:
                return

            result.total_retrieved += page_result.record_count
            for rejected in page_result.rejected:
                result.add_record_error(rejected["transactionId"], rejected["error"], stage="normalize")
            for transaction in page_result.transactions:
                self._check_deadline(deadline)
                self._process_record(result, transaction)

            if self._is_last_page(page_result):
                return
            if page >= self.max_pages:
                result.page_limit_reached = True
                message = (
                    f"Stopped after reaching the {self.max_pages}-page safety limit; "
                    "later pages were not fetched"
                )
                result.warnings.append(message)
                self.logger.warning(message, extra={"sync_job": self.job_name, "sync_page": page})
                return
            page += 1
            if self.page_delay_seconds:
                self.sleep(self.page_delay_seconds)

    def _fetch(self, result: SyncResult, start_date: date, end_date: date, page: int) -> TransactionPage | None:
        fetch_started = self.monotonic()
        try:
            page_result = self.client.fetch_page(start_date, end_date, page=page, page_size=self.page_size)
        except PaymentApiAuthError as exc:
            record_sync_page(status="failure", duration_seconds=self.monotonic() - fetch_started)
            message = f"Authentication failed: {exc}"
            result.add_page_error(page, message)
            result.fatal_error = message
            result.fetch_failed = True
            self.logger.error(
                "Payment API authentication failed",
                extra={"sync_job": self.job_name, "sync_page": page, "payment_api_status": exc.status_code},
            )
            return None
        except PaymentApiError as exc:
            record_sync_page(status="failure", duration_seconds=self.monotonic() - fetch_started)
            result.add_page_error(page, str(exc))
            result.fetch_failed = True
            self.logger.error(
                "Failed to fetch payment API page %s: %s",
                page,
                exc,
                extra={"sync_job": self.job_name, "sync_page": page},
            )
            return None
        record_sync_page(status="success", duration_seconds=self.monotonic() - fetch_started)
        return page_result

    def _is_last_page(self, page_result: TransactionPage) -> bool:
        if page_result.record_count < self.page_size:
            return True
        if page_result.has_more is False:
            return True
        if page_result.total_pages is not None and page_result.page >= page_result.total_pages:
            return True
        return False

    def _process_record(self, result: SyncResult, transaction: PaymentTransaction) -> None:
        now = self.clock()
        customer_id = None
        try:
            resolution = self.customer_resolver.resolve(transaction, now=now)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            result.add_record_error(transaction.id, f"Customer resolution failed: {exc}", stage="customer")
            self.logger.warning(
                "Customer resolution failed for transaction %s",
                transaction.id,
                extra={"sync_job": self.job_name, "sync_record_id": transaction.id, "error": str(exc)},
            )
        else:
            if resolution is not None:
                customer_id = resolution.customer.id
                if resolution.action == "created":
                    result.customers_created += 1
                elif resolution.action == "updated":
                    result.customers_updated += 1

        try:
            action = self.loader.upsert(transaction, customer_id=customer_id, now=now)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            result.add_record_error(transaction.id, f"Transaction upsert failed: {exc}", stage="transaction")
            self.logger.warning(
                "Transaction upsert failed for %s",
                transaction.id,
                extra={"sync_job": self.job_name, "sync_record_id": transaction.id, "error": str(exc)},
            )
            return
        result.counters.record(action)
        result.transactions_processed += 1

    @staticmethod
    def _final_status(result: SyncResult) -> str:
        if result.fatal_error:
            return SyncStatus.ERROR.value
        if result.fetch_failed and result.total_retrieved == 0:
            return SyncStatus.ERROR.value
        if result.errors:
            return SyncStatus.PARTIAL_SUCCESS.value
        return SyncStatus.SUCCESS.value
