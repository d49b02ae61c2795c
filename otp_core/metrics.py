"""
Prometheus Metrics
==================
Metric definitions for OTP issuance, validation, delivery and retention.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry for OTP metrics
OTP_REGISTRY = CollectorRegistry()

OTP_ISSUED = Counter(
    name="otp_issued_total",
    documentation="Codes issued",
    labelnames=["purpose", "action"],
    registry=OTP_REGISTRY,
)

OTP_REJECTED = Counter(
    name="otp_issue_rejected_total",
    documentation="Issue requests rejected before a code was created",
    labelnames=["purpose", "reason"],
    registry=OTP_REGISTRY,
)

OTP_VALIDATIONS = Counter(
    name="otp_validations_total",
    documentation="Validation attempts by outcome",
    labelnames=["outcome"],
    registry=OTP_REGISTRY,
)

OTP_DELIVERY_FAILURES = Counter(
    name="otp_delivery_failures_total",
    documentation="Codes the notifier failed to accept",
    labelnames=["purpose"],
    registry=OTP_REGISTRY,
)

OTP_SWEEP_DELETED = Counter(
    name="otp_sweep_deleted_total",
    documentation="Records removed by the retention sweep",
    registry=OTP_REGISTRY,
)

OTP_STORE_ERRORS = Counter(
    name="otp_store_errors_total",
    documentation="Store calls that failed or timed out",
    labelnames=["store", "operation", "error_type"],
    registry=OTP_REGISTRY,
)

OTP_STORE_LATENCY = Histogram(
    name="otp_store_call_duration_seconds",
    documentation="Time spent on record and counter store calls",
    labelnames=["store", "operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=OTP_REGISTRY,
)


def get_metrics_text() -> bytes:
    """Metrics in Prometheus exposition format."""
    return generate_latest(OTP_REGISTRY)
