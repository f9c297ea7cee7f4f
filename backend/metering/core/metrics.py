# Prometheus counters for the metering and billing paths. Labels stay
# low-cardinality (resource type, outcome, status); tenant ids go to logs.

from prometheus_client import Counter


QUOTA_CHECKS_TOTAL = Counter(
    "quota_checks_total",
    "Quota enforcement decisions",
    ["resource_type", "outcome"],  # outcome: allowed|denied|fail_open
)

QUOTA_FAIL_OPEN_TOTAL = Counter(
    "quota_fail_open_total",
    "Quota checks allowed because entitlement or usage could not be read",
    ["resource_type"],
)

QUOTA_THRESHOLD_WARNINGS_TOTAL = Counter(
    "quota_threshold_warnings_total",
    "Quota checks that crossed the warning threshold without exceeding the limit",
    ["resource_type"],
)

USAGE_EVENTS_RECORDED_TOTAL = Counter(
    "usage_events_recorded_total",
    "Usage events appended to the ledger",
    ["resource_type"],
)

USAGE_RECORD_FAILURES_TOTAL = Counter(
    "usage_record_failures_total",
    "Usage events that could not be recorded",
    ["resource_type"],
)

USAGE_ARCHIVE_RUNS_TOTAL = Counter(
    "usage_archive_runs_total",
    "Per-tenant monthly archival attempts",
    ["outcome"],  # outcome: archived|skipped|failed
)

PAYMENT_RESULTS_TOTAL = Counter(
    "payment_results_total",
    "Payment results applied to subscriptions",
    ["outcome"],  # outcome: success|failure|duplicate
)

SUBSCRIPTION_TRANSITIONS_TOTAL = Counter(
    "subscription_transitions_total",
    "Subscription lifecycle transitions",
    ["from_status", "to_status"],
)


def record_quota_decision(resource_type: str, outcome: str) -> None:
    QUOTA_CHECKS_TOTAL.labels(resource_type=resource_type, outcome=outcome).inc()


def record_quota_fail_open(resource_type: str) -> None:
    QUOTA_FAIL_OPEN_TOTAL.labels(resource_type=resource_type).inc()


def record_threshold_warning(resource_type: str) -> None:
    QUOTA_THRESHOLD_WARNINGS_TOTAL.labels(resource_type=resource_type).inc()


def record_usage_event(resource_type: str) -> None:
    USAGE_EVENTS_RECORDED_TOTAL.labels(resource_type=resource_type).inc()


def record_usage_failure(resource_type: str) -> None:
    USAGE_RECORD_FAILURES_TOTAL.labels(resource_type=resource_type).inc()


def record_archive_run(outcome: str) -> None:
    USAGE_ARCHIVE_RUNS_TOTAL.labels(outcome=outcome).inc()


def record_payment_result(outcome: str) -> None:
    PAYMENT_RESULTS_TOTAL.labels(outcome=outcome).inc()


def record_transition(from_status: str, to_status: str) -> None:
    SUBSCRIPTION_TRANSITIONS_TOTAL.labels(from_status=from_status, to_status=to_status).inc()
