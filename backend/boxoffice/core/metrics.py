"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, replayed, or a domain error code
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking orchestration latency',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

booking_transitions = Counter(
    'booking_transitions_total',
    'Booking status transitions',
    ['target']
)

# Database metrics
db_retries = Counter(
    'db_retry_attempts_total',
    'Transaction retries due to serialization failures or lock timeouts'
)

# Ledger metrics
low_stock_alerts = Counter(
    'low_stock_alerts_total',
    'Sale decrements that left an item at or below its low-stock threshold'
)

promo_redemptions = Counter(
    'promo_redemptions_total',
    'Promo code redemption attempts',
    ['result']  # applied, exhausted, expired, minimum_not_met
)

loyalty_points = Counter(
    'loyalty_points_total',
    'Loyalty points moved through the ledger',
    ['transaction_type']
)

reference_collisions = Counter(
    'booking_reference_collisions_total',
    'Random booking reference draws that hit an existing or retired code'
)

# Outbox metrics
outbox_dispatch = Counter(
    'outbox_dispatch_total',
    'Outbox events dispatched to the notification channel',
    ['result']  # dispatched, failed
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, replayed, or an error code"""
    booking_attempts.labels(status=status).inc()


def record_transition(target: str):
    booking_transitions.labels(target=target).inc()


def record_promo_redemption(result: str):
    promo_redemptions.labels(result=result).inc()


def record_loyalty_points(transaction_type: str, points: int):
    loyalty_points.labels(transaction_type=transaction_type).inc(abs(points))


def record_outbox_dispatch(dispatched: bool):
    result = "dispatched" if dispatched else "failed"
    outbox_dispatch.labels(result=result).inc()
