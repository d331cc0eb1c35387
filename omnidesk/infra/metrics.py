"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Webhook metrics
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook deliveries received",
    ["object", "outcome"],  # outcome: accepted, invalid_signature, unsupported_object, bad_payload
)

inbound_events_total = Counter(
    "inbound_events_total",
    "Normalized inbound events by processing outcome",
    ["channel", "outcome"],  # outcome: stored, duplicate, skipped, invalid, no_inbox, failed
)

# Outbound metrics
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Agent replies dispatched",
    ["channel", "status"],  # status: sent, stored, configuration_error, provider_error
)

provider_call_duration = Histogram(
    "provider_call_duration_seconds",
    "Channel provider send API latency in seconds",
    ["provider"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
