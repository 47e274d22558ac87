"""
Prometheus metrics for the chat API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message submission outcome counter (result)
- Published broadcast event counter (event)

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

# result: stored, storage_fault, rejected
messages_submitted_total = Counter(
    "messages_submitted_total",
    "Total message submissions by outcome",
    labelnames=["result"]
)

# event: new_message, message_delivered
events_published_total = Counter(
    "events_published_total",
    "Total events published to the broadcast channel",
    labelnames=["event"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
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


def record_submission(result: str) -> None:
    """Record a submission outcome ("stored", "storage_fault" or "rejected")."""
    messages_submitted_total.labels(result=result).inc()


def record_event_published(event: str) -> None:
    events_published_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
