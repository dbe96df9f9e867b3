"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total seat reservation attempts',
    ['status']  # success, conflict, not_found, invalid, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Seat reservation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

seat_map_retries = Counter(
    'seat_map_cas_retries_total',
    'Seat map writes retried after a version conflict',
    ['operation']  # claim, release
)

# Expiry metrics
expiry_outcomes = Counter(
    'expiry_task_outcomes_total',
    'Expiry task evaluations',
    ['outcome']  # released, noop
)

expiry_failures = Counter(
    'expiry_task_failures_total',
    'Expiry task evaluations that raised and were rescheduled'
)

expiry_alerts = Counter(
    'expiry_task_alerts_total',
    'Expiry tasks that kept failing past the alert threshold'
)

# Payment metrics
payment_confirmations = Counter(
    'payment_confirmations_total',
    'Payment confirmations received',
    ['result']  # paid, duplicate, late
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation_attempt(status: str):
    """Status: success, conflict, not_found, invalid, error"""
    reservation_attempts.labels(status=status).inc()


def record_seat_map_retry(operation: str):
    seat_map_retries.labels(operation=operation).inc()


def record_expiry_outcome(outcome: str):
    expiry_outcomes.labels(outcome=outcome).inc()


def record_payment_confirmation(result: str):
    payment_confirmations.labels(result=result).inc()
