"""
Prometheus metrics for the GuestDesk API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Outbound message counter (result)
- Escalation resolution counter (result)
- Completion stream counter (result)

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

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: sent, relay_error
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Outbound messages handed to the WhatsApp relay",
    labelnames=["result"]
)

# result: resolved, already_resolved, invalid_status, not_found, invalid_id
escalation_resolutions_total = Counter(
    "escalation_resolutions_total",
    "Escalation resolve attempts by outcome",
    labelnames=["result"]
)

# result: completed, upstream_error, interrupted
ai_streams_total = Counter(
    "ai_streams_total",
    "Completion streams relayed to clients",
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
    # Normalize path to avoid high-cardinality labels
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


def record_outbound_message(result: str) -> None:
    outbound_messages_total.labels(result=result).inc()


def record_escalation_resolution(result: str) -> None:
    escalation_resolutions_total.labels(result=result).inc()


def record_ai_stream(result: str) -> None:
    ai_streams_total.labels(result=result).inc()


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
