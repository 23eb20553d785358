"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation attempts',
    ['status']  # success, insufficient, contention, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

inventory_retries = Counter(
    'inventory_cas_retries_total',
    'Tier compare-and-set retries due to version conflicts'
)

# Checkout and payment metrics
checkouts = Counter(
    'checkouts_total',
    'Checkout outcomes',
    ['result']  # created, existing, rsvp, free, gateway_error
)

payment_confirmations = Counter(
    'payment_confirmations_total',
    'Payment confirmation outcomes',
    ['source', 'result']  # client/webhook; confirmed, noop, refund_required
)

webhook_deliveries = Counter(
    'payment_webhooks_total',
    'Payment webhook deliveries',
    ['result']  # processed, already_processed, ignored, rejected
)

# Door scans
scan_results = Counter(
    'scan_results_total',
    'Admission scan results',
    ['result']
)

# Background sweeps
sweep_recovered = Counter(
    'sweep_recovered_total',
    'Documents recovered by the cleanup sweeper',
    ['kind']  # reservation, order, queue_ticket
)

# Virtual queue
queue_admissions = Counter(
    'queue_admissions_total',
    'Queue tickets admitted',
    ['lane']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation_attempt(status: str):
    """Status: success, insufficient, contention, error"""
    reservation_attempts.labels(status=status).inc()


def record_inventory_retry():
    inventory_retries.inc()


def record_checkout(result: str):
    checkouts.labels(result=result).inc()


def record_payment_confirmation(source: str, result: str):
    payment_confirmations.labels(source=source, result=result).inc()


def record_webhook(result: str):
    webhook_deliveries.labels(result=result).inc()


def record_scan(result: str):
    scan_results.labels(result=result).inc()


def record_sweep(kind: str, count: int = 1):
    if count:
        sweep_recovered.labels(kind=kind).inc(count)


def record_queue_admission(lane: str):
    queue_admissions.labels(lane=lane).inc()


def record_cache_operation(operation: str, hit: bool):
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
