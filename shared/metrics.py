"""
Shared metrics configuration for the ACL cache subsystem.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server

from shared.errors import ValidationError


class AclCacheMetrics:
    """Prometheus metrics for the ACL cache.

    Metrics are registered on ``registry`` when one is given. With the
    default ``None`` they are created unregistered, so several cache
    instances (and test cases) can each own a collector.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the ACL cache metrics."""
        self._metrics["acl_cache_requests_total"] = Counter(
            "acl_cache_requests_total",
            "Total ACL requests by routing outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["acl_cache_hits_total"] = Counter(
            "acl_cache_hits_total",
            "Total single-flight cache hits",
            registry=self.registry
        )

        self._metrics["acl_cache_loads_total"] = Counter(
            "acl_cache_loads_total",
            "Total loader invocations on cache misses",
            ["status"],
            registry=self.registry
        )

        self._metrics["acl_cache_coalesced_waits_total"] = Counter(
            "acl_cache_coalesced_waits_total",
            "Total callers that joined an in-flight load",
            registry=self.registry
        )

        self._metrics["acl_cache_consistency_checks_total"] = Counter(
            "acl_cache_consistency_checks_total",
            "Total consistency checks against the shared hash store",
            ["result"],
            registry=self.registry
        )

        self._metrics["acl_cache_refresh_total"] = Counter(
            "acl_cache_refresh_total",
            "Total ACL cache refresh runs",
            ["status"],
            registry=self.registry
        )

        self._metrics["acl_cache_refresh_duration_seconds"] = Histogram(
            "acl_cache_refresh_duration_seconds",
            "ACL cache refresh duration in seconds",
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server for this collector's registry."""
        if self.registry is None:
            raise ValidationError("Metrics server needs a registry; these metrics are unregistered")
        start_http_server(port, registry=self.registry)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            if labels:
                metric.labels(**labels).inc()
            else:
                metric.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric.labels(**labels).observe(value)
        else:
            metric.observe(value)
