"""
Prometheus metrics endpoint.

Exposes system metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Scheduling Metrics
# ============================================

notes_claimed = Counter(
    'notes_claimed_total',
    'Total due notes claimed and admitted by the poller'
)

notes_claim_lost = Counter(
    'notes_claim_lost_total',
    'Total claims lost to a concurrent poller or worker'
)

notes_replayed = Counter(
    'notes_replayed_total',
    'Total dead or failed notes replayed by an operator'
)

# ============================================
# Delivery Metrics
# ============================================

notes_delivered = Counter(
    'notes_delivered_total',
    'Total notes delivered successfully'
)

notes_retried = Counter(
    'notes_retry_scheduled_total',
    'Total delivery retries scheduled'
)

notes_dead = Counter(
    'notes_dead_total',
    'Total notes moved to dead after exhausting attempts'
)

webhook_attempts = Counter(
    'webhook_attempts_total',
    'Total webhook calls made',
    ['outcome']
)

webhook_duration = Histogram(
    'webhook_duration_seconds',
    'Webhook call duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_note_claimed():
    """Record a note claimed and admitted by the poller."""
    notes_claimed.inc()


def track_claim_lost():
    """Record a claim that lost its conditional update."""
    notes_claim_lost.inc()


def track_note_replayed():
    """Record an operator replay."""
    notes_replayed.inc()


def track_webhook_attempt(ok: bool, duration_seconds: float):
    """Record one webhook call."""
    webhook_attempts.labels(outcome="ok" if ok else "failed").inc()
    webhook_duration.observe(duration_seconds)


def track_note_delivered():
    notes_delivered.inc()


def track_retry_scheduled():
    notes_retried.inc()


def track_note_dead():
    notes_dead.inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
