"""Prometheus metrics for settlement outcomes, vendor calls, and webhook delivery"""

from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_counter = Counter(
    "bcard_settlement_total",
    "Settlement attempts by outcome",
    ["outcome"],  # succeeded | InvalidAmount | ValidationFailed | CaptureFailed | CardIssuanceFailed | InternalError
)

spending_limit_bucket_counter = Counter(
    "bcard_spending_limit_bucket",
    "Issued bcard spending limits by bucket",
    ["bucket"],  # $0-$50, $50-$200, $200-$1000, $1000+
)

manual_remediation_counter = Counter(
    "bcard_manual_remediation_total",
    "Settlements that left captured money without a card",
    ["action"],  # refund | card_retry
)

# Vendor metrics
capture_latency_histogram = Histogram(
    "bcard_capture_latency_seconds",
    "Per-source capture time",
    ["outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0],
)

capture_failure_counter = Counter(
    "bcard_capture_failures_total",
    "Failed per-source captures",
    ["error_code"],
)

card_issuance_failure_counter = Counter(
    "bcard_card_issuance_failures_total",
    "Settlements where every capture succeeded but no card was issued",
)

# Policy metrics
policy_denial_counter = Counter(
    "bcard_policy_denials_total",
    "Funding source attachments denied by the policy gate",
    ["reason"],  # quota | name
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Ops webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(result) -> None:
    """Record outcome, capture and spending limit metrics for one settlement result"""
    for capture in result.captures:
        outcome = capture.status.value
        capture_latency_histogram.labels(outcome=outcome).observe(capture.processing_time_ms / 1000)
        if outcome == "failed":
            capture_failure_counter.labels(error_code=capture.error_code or "unknown").inc()

    if result.status == "succeeded":
        settlement_counter.labels(outcome="succeeded").inc()

        limit = result.card.spending_limit
        if limit <= 50:
            bucket = "$0-$50"
        elif limit <= 200:
            bucket = "$50-$200"
        elif limit <= 1000:
            bucket = "$200-$1000"
        else:
            bucket = "$1000+"
        spending_limit_bucket_counter.labels(bucket=bucket).inc()
        return

    settlement_counter.labels(outcome=result.error_kind.value).inc()
    if result.error_kind.value == "CardIssuanceFailed":
        card_issuance_failure_counter.inc()
    if result.requires_manual_refund:
        manual_remediation_counter.labels(action="refund").inc()
    if result.requires_manual_card_retry:
        manual_remediation_counter.labels(action="card_retry").inc()
