"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


orders_placed_total = Counter(
    "orders_placed_total",
    "Orders recorded after a successful authorization",
    ["service", "payment_method"],
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Status transitions evaluated by the reconciliation engine",
    ["service", "source", "outcome"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound provider webhook events",
    ["service", "event_type", "outcome"],
)
captures_total = Counter("captures_total", "Payment capture attempts", ["service", "outcome"])
notifications_total = Counter("notifications_total", "Order-ready push dispatches", ["service", "outcome"])
provider_latency_seconds = Histogram(
    "provider_latency_seconds",
    "Payment provider call latency seconds",
    ["service", "provider", "operation"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
