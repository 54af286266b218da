"""Prometheus metrics for transaction volume, reconciliation, PIN security and notifications"""

from prometheus_client import Counter, Histogram

# Transaction metrics
transaction_created_counter = Counter(
    "epulsaku_transactions_created_total",
    "Transactions written to the ledger",
    ["provider", "status"],
)

status_transition_counter = Counter(
    "epulsaku_status_transitions_total",
    "Transactions moved out of Pending",
    ["provider", "status", "source"],  # source: auto_update | webhook | manual
)

# Reconciliation metrics
reconcile_tick_counter = Counter(
    "epulsaku_reconcile_ticks_total",
    "Reconciliation ticks by outcome",
    ["outcome"],  # resolved | still_pending | upstream_error | stopped
)

upstream_failures_counter = Counter(
    "epulsaku_upstream_failures_total",
    "Failed provider API calls",
    ["provider"],
)

upstream_latency_histogram = Histogram(
    "epulsaku_upstream_latency_seconds",
    "Provider API response time",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
)

# Security metrics
pin_failure_counter = Counter(
    "epulsaku_pin_failures_total",
    "Incorrect PIN submissions",
    ["role"],
)

account_lockout_counter = Counter(
    "epulsaku_account_lockouts_total",
    "Accounts disabled after repeated PIN failures",
)

login_throttled_counter = Counter(
    "epulsaku_login_throttled_total",
    "Password logins rejected by the per-IP throttle",
)

# Notification metrics
notification_failure_counter = Counter(
    "epulsaku_notification_failures_total",
    "Bot messages that could not be delivered",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transaction_created(provider: str, status: str) -> None:
    transaction_created_counter.labels(provider=provider, status=status).inc()


def record_status_transition(provider: str, status: str, source: str) -> None:
    status_transition_counter.labels(provider=provider, status=status, source=source).inc()
