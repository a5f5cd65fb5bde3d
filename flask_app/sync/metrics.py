"""Prometheus metrics helpers for the transaction sync."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_scheduler_enabled_gauge = Gauge(
    "sync_scheduler_enabled",
    "Whether the transaction sync scheduler has an armed timer (1) or is disabled (0).",
)
_sync_runs_counter = Counter(
    "sync_runs_total",
    "Completed transaction sync runs by final status.",
    ["status"],
)
_sync_records_counter = Counter(
    "sync_records_total",
    "Transactions processed by the sync, by outcome.",
    ["outcome"],
)
_sync_pages_counter = Counter(
    "sync_pages_total",
    "Payment API pages fetched by status.",
    ["status"],
)
_sync_page_duration = Histogram(
    "sync_page_fetch_duration_seconds",
    "Duration of payment API page fetches in seconds.",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)
_payment_api_auth_attempts = Counter(
    "payment_api_auth_attempts_total",
    "Payment API authentication attempts by strategy and outcome.",
    ["strategy", "outcome"],
)


def record_scheduler_status(enabled: bool) -> None:
    """Set the scheduler enabled gauge."""

    _scheduler_enabled_gauge.set(1 if enabled else 0)


def record_sync_run(status: str) -> None:
    _sync_runs_counter.labels(status=status).inc()


def record_sync_records(*, created: int = 0, updated: int = 0, unchanged: int = 0, failed: int = 0) -> None:
    """Increment per-outcome record counters for one run."""

    for outcome, count in (
        ("created", created),
        ("updated", updated),
        ("unchanged", unchanged),
        ("failed", failed),
    ):
        if count:
            _sync_records_counter.labels(outcome=outcome).inc(count)


def record_sync_page(*, status: Literal["success", "failure"], duration_seconds: float) -> None:
    """Capture metrics for a single page fetch."""

    _sync_pages_counter.labels(status=status).inc()
    _sync_page_duration.observe(max(duration_seconds, 0.0))


def record_payment_api_auth_attempt(strategy: str, outcome: Literal["success", "failure", "unavailable"]) -> None:
    _payment_api_auth_attempts.labels(strategy=strategy, outcome=outcome).inc()
