"""
Shared metrics configuration for the product catalog services.
"""

from typing import Dict, Any, Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so that the instance built at startup is
    the only place metrics for the service are recorded.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "endpoint", "status"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request latency distributions",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["http_errors_total"] = Counter(
            "http_errors_total",
            "Total number of HTTP errors",
            ["method", "endpoint", "error_type"],
            registry=self.registry
        )

        self._metrics["http_requests_in_flight"] = Gauge(
            "http_requests_in_flight",
            "Requests currently being served",
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["probe", "status"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "Cache lookups by outcome",
            ["cache_type", "result"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

        if status_code >= 400:
            self.record_http_error(method, endpoint, "http_error")

    def record_http_error(self, method: str, endpoint: str, error_type: str):
        """Record an HTTP error."""
        self._metrics["http_errors_total"].labels(
            method=method,
            endpoint=endpoint,
            error_type=error_type
        ).inc()

    def record_health_check(self, probe: str, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(probe=probe, status=status).inc()

    def record_cache_lookup(self, cache_type: str, result: str):
        """Record a cache hit, miss or error."""
        self._metrics["cache_requests_total"].labels(cache_type=cache_type, result=result).inc()

    def set_in_flight(self, value: int):
        self._metrics["http_requests_in_flight"].set(value)

    def render(self) -> Tuple[bytes, str]:
        """Exposition-format snapshot of the registry."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
