"""
Shared metrics configuration for the OIDC access engine.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY
from typing import Dict, Any, Optional
import threading


class OIDCMetrics:
    """Prometheus metrics for provider calls and token checks."""
    
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()
    
    def _setup_metrics(self):
        """Register the engine's metrics on the registry."""
        self._metrics["provider_requests_total"] = Counter(
            "oidc_provider_requests_total",
            "Total calls to the identity provider",
            ["endpoint", "status"],
            registry=self.registry
        )
        
        self._metrics["provider_request_duration_seconds"] = Histogram(
            "oidc_provider_request_duration_seconds",
            "Identity provider call duration in seconds",
            ["endpoint"],
            registry=self.registry
        )
        
        self._metrics["token_validations_total"] = Counter(
            "oidc_token_validations_total",
            "Total token validations",
            ["token_type", "outcome"],
            registry=self.registry
        )
        
        self._metrics["request_authentications_total"] = Counter(
            "oidc_request_authentications_total",
            "Total request authentications",
            ["outcome"],
            registry=self.registry
        )
    
    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)
    
    def record_provider_request(self, endpoint: str, status: str, duration: float):
        """Record one identity provider call."""
        self._metrics["provider_requests_total"].labels(endpoint=endpoint, status=status).inc()
        self._metrics["provider_request_duration_seconds"].labels(endpoint=endpoint).observe(duration)
    
    def record_token_validation(self, token_type: str, outcome: str):
        """Record a token validation outcome (``ok`` or an error code)."""
        self._metrics["token_validations_total"].labels(token_type=token_type, outcome=outcome).inc()
    
    def record_authentication(self, outcome: str):
        """Record a request authentication outcome."""
        self._metrics["request_authentications_total"].labels(outcome=outcome).inc()


_default_metrics: Optional[OIDCMetrics] = None
_default_lock = threading.Lock()


def get_metrics() -> OIDCMetrics:
    """Return the process-wide metrics bound to the default registry."""
    global _default_metrics
    with _default_lock:
        if _default_metrics is None:
            _default_metrics = OIDCMetrics()
        return _default_metrics
