"""Prometheus metrics for sync health, broker latency and repo fee outcomes"""

from prometheus_client import Counter, Histogram

# Sync metrics
sync_session_counter = Counter(
    "po_sync_sessions_total",
    "Broker sync sessions by terminal status",
    ["mode", "status"],  # daily | refresh ; success | failed | canceled
)

sync_pages_counter = Counter(
    "po_sync_pages_fetched_total",
    "Broker pages fetched during sync",
)

sync_retry_counter = Counter(
    "po_sync_retry_attempts_total",
    "Broker page fetch retries",
)

sync_operations_imported_counter = Counter(
    "po_sync_operations_imported_total",
    "Operations committed by sync",
)

# Broker API metrics
broker_latency_histogram = Histogram(
    "broker_request_latency_seconds",
    "Broker venue response time",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

broker_failure_counter = Counter(
    "broker_request_failures_total",
    "Failed broker venue calls",
    ["endpoint"],
)

# Repo fee metrics
repo_breakdown_counter = Counter(
    "po_repo_breakdowns_total",
    "Repo fee breakdowns computed",
    ["status", "source"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_sync_outcome(mode: str, status: str, pages_fetched: int, retry_attempts: int, imported: int) -> None:
    """Record terminal sync metrics"""
    sync_session_counter.labels(mode=mode, status=status).inc()
    sync_pages_counter.inc(pages_fetched)
    sync_retry_counter.inc(retry_attempts)
    sync_operations_imported_counter.inc(imported)


def record_repo_breakdown(status: str, source: str) -> None:
    repo_breakdown_counter.labels(status=status, source=source).inc()
