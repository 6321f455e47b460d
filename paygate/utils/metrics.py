"""
Prometheus counters of the reconciliation pipeline (webhooks, matching,
provisioning, access checks, processor calls) and the /metrics scrape endpoint.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
webhooks_received_total = Counter(
    "webhooks_received_total",
    "Total processor notifications by outcome",
    ["processor", "outcome"],  # processed, ignored, order_not_found, duplicate, error
)

order_matches_total = Counter(
    "order_matches_total",
    "Order matcher results by tier",
    ["tier"],  # external_reference, processor_reference, payment_id, fallback, none
)

provisioning_total = Counter(
    "provisioning_total",
    "Account provisioning results",
    ["result"],  # created, upgraded, partial
)

access_checks_total = Counter(
    "access_checks_total",
    "Access verification results",
    ["result"],  # granted, denied, error
)

fulfillment_notifications_total = Counter(
    "fulfillment_notifications_total",
    "Fulfillment notification requests",
    ["kind", "status"],  # queued, skipped_masked, enqueue_failed, sent, failed
)

processor_requests_total = Counter(
    "processor_requests_total",
    "Total payment processor API requests",
    ["processor", "method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
processor_request_duration_seconds = Histogram(
    "processor_request_duration_seconds",
    "Payment processor API request duration",
    ["processor", "method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
