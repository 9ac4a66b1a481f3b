"""Metrics describing reconcile outcomes."""

from prometheus_client import Counter, Histogram

from .registry import Registry

__all__ = ["ReconcileMetrics"]

RESULT_SUCCESS = "success"
RESULT_REQUEUE = "requeue"
RESULT_ERROR = "error"


class ReconcileMetrics:
    """Counts reconciles by outcome and records how long they take."""

    def __init__(self, registry: Registry) -> None:
        """Initialize ReconcileMetrics and register its collectors."""
        self._total = Counter(
            "helm_operator_reconcile_total",
            "Number of reconciles by kind and result",
            ["kind", "result"],
            registry=None,
        )
        self._duration = Histogram(
            "helm_operator_reconcile_duration_seconds",
            "Time spent reconciling a managed object",
            ["kind"],
            registry=None,
        )
        registry.register(self._total)
        registry.register(self._duration)

    def observe_result(self, kind: str, result: str) -> None:
        self._total.labels(kind=kind, result=result).inc()

    def observe_duration(self, kind: str, seconds: float) -> None:
        self._duration.labels(kind=kind).observe(seconds)
