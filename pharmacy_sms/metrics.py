"""
Prometheus metrics for the SMS pipeline.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Outcome counters for outbound dispatch, inbound ingestion and status updates

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: sent, bad_request, no_number, provider_error, config_error, error
sms_dispatch_total = Counter(
    "sms_dispatch_total",
    "Outbound SMS dispatch outcomes",
    labelnames=["result"]
)

# result: created, duplicate, validation_error, error
sms_inbound_total = Counter(
    "sms_inbound_total",
    "Inbound SMS webhook outcomes",
    labelnames=["result"]
)

# result: updated, not_found, validation_error, error
sms_status_updates_total = Counter(
    "sms_status_updates_total",
    "Delivery status webhook outcomes",
    labelnames=["result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_dispatch_outcome(result: str) -> None:
    sms_dispatch_total.labels(result=result).inc()


def record_inbound_outcome(result: str) -> None:
    sms_inbound_total.labels(result=result).inc()


def record_status_outcome(result: str) -> None:
    sms_status_updates_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type string for Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
