"""Prometheus metrics for report volume, loan detection, valuations and the audit sink"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Report metrics
report_counter = Counter(
    "dentalflow_report_total",
    "Finance reports computed",
    ["report", "outcome"],  # outcome: success | failure
)

loan_transition_counter = Counter(
    "dentalflow_loan_transitions_total",
    "Loans created or changing status during detection",
    ["transition"],  # created | active | paid_off | unconfirmed
)

valuation_value_histogram = Histogram(
    "dentalflow_valuation_estimated_value",
    "Estimated practice value per snapshot (dollars)",
    buckets=[0, 100_000, 250_000, 500_000, 1_000_000, 2_500_000, 5_000_000],
)

# Upstream store metrics
upstream_failures_counter = Counter(
    "upstream_failures_total",
    "Transaction/loan store calls that failed",
)

# Audit sink metrics
audit_failure_counter = Counter(
    "audit_failures_total",
    "Audit events that could not be recorded",
)

audit_webhook_latency_histogram = Histogram(
    "audit_webhook_latency_seconds",
    "Audit webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_report(report: str, success: bool) -> None:
    report_counter.labels(report=report, outcome="success" if success else "failure").inc()


def record_valuation(estimated_value: Decimal) -> None:
    """Negative valuations land in the lowest bucket"""
    valuation_value_histogram.observe(max(float(estimated_value), 0.0))
