"""Prometheus metrics recorded by the HTTP layer.

Extraction, pipeline and ledger counters live in their own modules and are
exported through the same default registry by ``/metrics``.
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route and response status",
    ["method", "endpoint", "status"],
)

# Inline submissions wait for the model, so the upper buckets are wide
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=(0.05, 0.25, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0),
)

receipt_submissions_total = Counter(
    "receipt_submissions_total",
    "Receipts accepted by the API",
    ["mode", "outcome"],  # mode: sync, queued
)

receipt_upload_bytes = Histogram(
    "receipt_upload_bytes",
    "Size of accepted receipt uploads",
    buckets=(50_000, 250_000, 1_000_000, 2_500_000, 5_000_000, 10_485_760),
)


def get_metrics() -> tuple[bytes, str]:
    """Render the default registry.

    Returns:
        Tuple of (payload, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
