"""
Prometheus metrics for the chat relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Relay event counter (event)
- Send outcome counter (result)
- Active connection and room gauges

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds (default buckets)
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# event: connect, join_room, send_message, disconnect
relay_events_total = Counter(
    "relay_events_total",
    "Real-time events handled by the relay",
    labelnames=["event"]
)

# result: broadcast, validation_error, persistence_error, empty_result, not_joined
relay_send_outcomes_total = Counter(
    "relay_send_outcomes_total",
    "Outcomes of send_message handling",
    labelnames=["result"]
)

relay_active_connections = Gauge(
    "relay_active_connections",
    "Currently connected real-time sessions"
)

relay_active_rooms = Gauge(
    "relay_active_rooms",
    "Rooms with at least one subscribed connection"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    History paths embed the room id, so they are collapsed into one label
    to avoid high-cardinality series.
    """
    normalized_path = path.split("?")[0]
    if normalized_path.startswith("/api/messages/"):
        normalized_path = "/api/messages/{roomId}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_relay_event(event: str) -> None:
    relay_events_total.labels(event=event).inc()


def record_send_outcome(result: str) -> None:
    relay_send_outcomes_total.labels(result=result).inc()


def record_room_count(count: int) -> None:
    relay_active_rooms.set(count)


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
