"""
Prometheus metrics for the repository authorization service.

Each collector owns a private ``CollectorRegistry`` so several services
(or test fixtures) can live in one process without name clashes.
"""

from typing import Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Histogram, Info
from prometheus_client.metrics import MetricWrapperBase

# name -> (type, help, labels, histogram buckets)
MetricSpec = Tuple[type, str, Tuple[str, ...], Optional[Tuple[float, ...]]]

COMMON_METRICS: Dict[str, MetricSpec] = {
    "http_requests_total": (Counter, "HTTP requests served", ("method", "endpoint", "status_code"), None),
    "http_request_duration_seconds": (Histogram, "HTTP request latency", ("method", "endpoint"), None),
    "health_check_total": (Counter, "Health probes by reported status", ("status",), None),
    "errors_total": (Counter, "Aborted requests by error code", ("error_type", "service"), None),
}

AUTHZ_METRICS: Dict[str, MetricSpec] = {
    "authz_decisions_total": (Counter, "Authorization decisions by outcome", ("action", "outcome"), None),
    "authz_decision_duration_seconds": (
        Histogram, "Time from request to verdict", ("action",),
        (0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
    ),
    "authz_closure_size": (
        Histogram, "Usergroups in a resolved membership closure", (),
        (0, 1, 2, 5, 10, 25, 50, 100, 250)
    ),
}

SERVICE_METRICS = {"authz": AUTHZ_METRICS}


class MetricsCollector:
    """Metrics of one service, registered on its own registry."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, MetricWrapperBase] = {}

        Info("service", "Service identity", registry=self.registry).info(
            {"service": service_name, "version": "1.0.0"}
        )
        self._register(COMMON_METRICS)
        self._register(SERVICE_METRICS.get(service_name, {}))

    def _register(self, specs: Dict[str, MetricSpec]):
        for name, (kind, documentation, labels, buckets) in specs.items():
            kwargs = {"registry": self.registry}
            if buckets is not None:
                kwargs["buckets"] = buckets
            self._metrics[name] = kind(name, documentation, labels, **kwargs)

    def _child(self, name: str, labels: Dict[str, str]) -> Optional[MetricWrapperBase]:
        metric = self._metrics.get(name)
        if metric is None:
            return None
        return metric.labels(**labels) if labels else metric

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint, status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str, service: Optional[str] = None):
        self.increment_counter("errors_total", error_type=error_type, service=service or self.service_name)

    def record_decision(self, action: str, allowed: bool, duration: float):
        """Count a verdict and observe how long it took."""
        self.increment_counter("authz_decisions_total", action=action, outcome="allow" if allowed else "deny")
        self.observe_histogram("authz_decision_duration_seconds", duration, action=action)

    def increment_counter(self, metric_name: str, **labels):
        """Increment ``metric_name``; unknown names are ignored."""
        child = self._child(metric_name, labels)
        if child is not None:
            child.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe ``value`` on ``metric_name``; unknown names are ignored."""
        child = self._child(metric_name, labels)
        if child is not None:
            child.observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
