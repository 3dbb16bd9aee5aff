"""
Prometheus metrics: HTTP instrumentation plus checkout and loyalty counters.

GET /metrics is unauthenticated; keep it on the internal network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST,
    generate_latest, multiprocess
)

metrics_bp = Blueprint('metrics', __name__)

# Under Gunicorn every worker writes to PROMETHEUS_MULTIPROC_DIR and the
# scrape aggregates them through a throw-away registry.
MULTIPROCESS_MODE = 'PROMETHEUS_MULTIPROC_DIR' in os.environ

if MULTIPROCESS_MODE:
    scrape_registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(scrape_registry)
    _metric_registry = None
else:
    scrape_registry = REGISTRY
    _metric_registry = REGISTRY


def _counter(name, documentation, labels=()):
    return Counter(name, documentation, list(labels), registry=_metric_registry)


# HTTP
http_requests_total = _counter(
    'http_requests_total', 'Total HTTP requests', ('method', 'endpoint', 'http_status')
)
http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)
http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests currently being processed',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)

# Checkout and loyalty
checkouts_total = _counter('storefront_checkouts_total', 'Completed checkouts')
discount_redemptions_total = _counter(
    'storefront_discount_redemptions_total', 'Discount codes redeemed at checkout'
)
loyalty_points_total = _counter(
    'storefront_loyalty_points_total',
    'Loyalty points moved (earned, redeemed, refunded, clawed_back)',
    ('direction',)
)
compensation_failures_total = _counter(
    'storefront_compensation_failures_total',
    'Cancellation compensations written to the reconciliation log'
)


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status."""

    @app.before_request
    def start_request_timer():
        g._metrics_started_at = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        started_at = g.pop('_metrics_started_at', None)
        if started_at is None:
            return response
        try:
            endpoint = request.endpoint or 'unknown'
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started_at)
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
            http_requests_in_flight.dec()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(scrape_registry), mimetype=CONTENT_TYPE_LATEST)
