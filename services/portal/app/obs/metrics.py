"""
Prometheus metrics for the PAL portal backend.
Provides metrics for HTTP requests, abuse controls, and catalog operations.
"""
import re
import time
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response


# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['route', 'method', 'status']
)

http_request_duration_ms = Histogram(
    'http_request_duration_ms',
    'HTTP request duration in milliseconds',
    ['route', 'method'],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
)

# Abuse-control Metrics
security_events_total = Counter(
    'security_events_total',
    'Total number of security events logged',
    ['event_type', 'severity']
)

rate_limit_hits_total = Counter(
    'rate_limit_hits_total',
    'Total number of requests rejected by the rate limiter',
    ['scope']
)

captcha_verifications_total = Counter(
    'captcha_verifications_total',
    'Total number of CAPTCHA verifications',
    ['outcome']
)

blacklisted_identifiers = Gauge(
    'blacklisted_identifiers',
    'Number of client identifiers currently blacklisted'
)

# Catalog Metrics
catalog_searches_total = Counter(
    'catalog_searches_total',
    'Total number of catalog list queries',
    ['has_query', 'has_term']
)

catalog_query_latency_ms = Histogram(
    'catalog_query_latency_ms',
    'Catalog list query latency in milliseconds',
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500)
)

documents_uploaded_total = Counter(
    'documents_uploaded_total',
    'Total number of document uploads',
    ['status']
)

documents_deleted_total = Counter(
    'documents_deleted_total',
    'Total number of document deletions',
    ['status']
)

material_requests_total = Counter(
    'material_requests_total',
    'Total number of material request submissions',
    ['status']
)


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self):
        self.start_time = time.time()

    def record_http_request(self, route: str, method: str, status_code: int, duration_ms: float):
        """Record HTTP request metrics."""
        normalized_route = self._normalize_route(route)

        http_requests_total.labels(
            route=normalized_route,
            method=method,
            status=str(status_code)
        ).inc()

        http_request_duration_ms.labels(
            route=normalized_route,
            method=method
        ).observe(duration_ms)

    def record_security_event(self, event_type: str, severity: str):
        security_events_total.labels(event_type=event_type, severity=severity).inc()

    def record_rate_limit_hit(self, scope: str):
        rate_limit_hits_total.labels(scope=scope).inc()

    def record_captcha_verification(self, outcome: str):
        """Record a CAPTCHA outcome: success, failure, missing or error."""
        captcha_verifications_total.labels(outcome=outcome).inc()

    def set_blacklisted_identifiers(self, count: int):
        blacklisted_identifiers.set(count)

    def record_catalog_search(self, has_query: bool, has_term: bool, duration_ms: float):
        catalog_searches_total.labels(
            has_query=str(has_query).lower(),
            has_term=str(has_term).lower()
        ).inc()
        catalog_query_latency_ms.observe(duration_ms)

    def record_document_upload(self, status: str):
        documents_uploaded_total.labels(status=status).inc()

    def record_document_delete(self, status: str):
        documents_deleted_total.labels(status=status).inc()

    def record_material_request(self, status: str):
        material_requests_total.labels(status=status).inc()

    def _normalize_route(self, route: str) -> str:
        """Normalize route for metrics by replacing dynamic segments."""
        # Admin document routes carry a full storage path
        route = re.sub(r'^(/api/admin/documents)/(?!suggest$).+', r'\1/{identifier}', route)

        route = re.sub(r'/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '/{uuid}', route)

        route = re.sub(r'/\d+', '/{id}', route)

        return route

    def get_metrics_response(self) -> Response:
        """Get Prometheus metrics in text format."""
        metrics_data = generate_latest()
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def record_http_request(route: str, method: str, status_code: int, duration_ms: float):
    """Record HTTP request metrics."""
    metrics.record_http_request(route, method, status_code, duration_ms)


def record_security_event(event_type: str, severity: str):
    metrics.record_security_event(event_type, severity)


def record_rate_limit_hit(scope: str):
    metrics.record_rate_limit_hit(scope)


def record_captcha_verification(outcome: str):
    metrics.record_captcha_verification(outcome)
