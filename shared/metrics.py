"""
Shared metrics configuration for the Subscriptions App.
"""

from typing import Dict, Any, Optional
import threading

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

    Every collector owns a private registry unless one is passed in, so that
    several service instances (as in tests) never clash on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
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
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_sync_metrics()

    def _setup_sync_metrics(self):
        """Set up membership synchronization metrics."""
        self._metrics["poll_cycles_total"] = Counter(
            "poll_cycles_total",
            "Total membership poll cycles",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["poll_cycle_duration_seconds"] = Histogram(
            "poll_cycle_duration_seconds",
            "Poll cycle duration in seconds",
            buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
            registry=self.registry
        )

        self._metrics["snapshot_patrons"] = Gauge(
            "snapshot_patrons",
            "Number of patrons in the published snapshot",
            registry=self.registry
        )

        self._metrics["snapshot_swaps_total"] = Counter(
            "snapshot_swaps_total",
            "Total snapshot swaps",
            registry=self.registry
        )

        self._metrics["token_refresh_total"] = Counter(
            "token_refresh_total",
            "Total OAuth2 token requests",
            ["grant_type", "status"],
            registry=self.registry
        )

        self._metrics["rate_limit_waits_total"] = Counter(
            "rate_limit_waits_total",
            "Outbound requests that had to wait for a rate limit token",
            registry=self.registry
        )

        self._metrics["interactions_total"] = Counter(
            "interactions_total",
            "Total inbound interactions",
            ["interaction_type", "outcome"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_poll_cycle(self, outcome: str, duration: float):
        """Record the outcome and duration of one poll cycle."""
        self._metrics["poll_cycles_total"].labels(outcome=outcome).inc()
        self._metrics["poll_cycle_duration_seconds"].observe(duration)

    def record_snapshot_swap(self, size: int):
        """Record a snapshot publication."""
        with self._lock:
            self._metrics["snapshot_swaps_total"].inc()
            self._metrics["snapshot_patrons"].set(size)

    def record_token_request(self, grant_type: str, status: str):
        """Record a grant or refresh attempt."""
        self._metrics["token_refresh_total"].labels(grant_type=grant_type, status=status).inc()

    def record_rate_limit_wait(self):
        """Record an outbound request delayed by the rate limiter."""
        self._metrics["rate_limit_waits_total"].inc()

    def record_interaction(self, interaction_type: str, outcome: str):
        """Record an inbound interaction."""
        self._metrics["interactions_total"].labels(
            interaction_type=interaction_type,
            outcome=outcome
        ).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
