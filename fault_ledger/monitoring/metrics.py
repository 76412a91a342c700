"""Prometheus metrics definitions for fault_ledger."""

from __future__ import annotations

from prometheus_client import Counter

ERRORS_LOGGED = Counter(
    "errors_logged_total",
    "Total error logging attempts by application and outcome.",
    labelnames=("application", "outcome"),
)

ERROR_DUPLICATES = Counter(
    "error_duplicates_total",
    "Total occurrences folded into an existing error record.",
    labelnames=("application",),
)

STORE_FAILURES = Counter(
    "store_failures_total",
    "Total error store operations that failed.",
    labelnames=("store", "operation"),
)

CAPTURE_HANDLER_FAILURES = Counter(
    "capture_handler_failures_total",
    "Total failures raised by capture handlers and custom data collectors.",
    labelnames=("kind",),
)


def record_log_outcome(application: str | None, outcome: str) -> None:
    """Increment the logging attempts counter with the supplied labels."""

    ERRORS_LOGGED.labels(application=application or "unknown", outcome=outcome).inc()


def record_duplicate(application: str | None) -> None:
    """Increment the rolled-up duplicates counter for an application."""

    ERROR_DUPLICATES.labels(application=application or "unknown").inc()


def record_store_failure(store: str, operation: str) -> None:
    """
    Record a failed store operation.

    Args:
        store: Registered store name
        operation: Contract operation that failed (insert, increment_duplicate, ...)
    """
    STORE_FAILURES.labels(store=store, operation=operation).inc()


def record_handler_failure(kind: str) -> None:
    """Record a failing capture handler, collector or log hook by kind."""

    CAPTURE_HANDLER_FAILURES.labels(kind=kind).inc()
