"""Informational gauge tracking which managed objects exist."""

from collections.abc import Iterable

from prometheus_client import Gauge
from prometheus_client.registry import Collector

from helm_operator.manifest import Resource

from .registry import (
    Capability,
    CreateEvent,
    DeleteEvent,
    Observer,
    Registry,
    UpdateEvent,
)

__all__ = [
    "InfoGauge",
    "info_gauge_name",
    "new_info_registry",
]


def info_gauge_name(kind: str) -> str:
    return f"{kind.lower()}_info"


class InfoGauge(Observer):
    """Gauge set to 1 for every existing object of a kind.

    The series are labeled by namespace and name and removed when the
    object is deleted.
    """

    capabilities = Capability.CREATE | Capability.UPDATE | Capability.DELETE

    def __init__(self, kind: str) -> None:
        """Initialize InfoGauge."""
        self._gauge = Gauge(
            info_gauge_name(kind),
            f"Information about the {kind} custom resource",
            ["namespace", "name"],
            registry=None,
        )

    def collectors(self) -> Iterable[Collector]:
        return (self._gauge,)

    def _set(self, obj: Resource) -> None:
        self._gauge.labels(namespace=obj.namespace or "", name=obj.name).set(1)

    def on_create(self, event: CreateEvent) -> None:
        self._set(event.obj)

    def on_update(self, event: UpdateEvent) -> None:
        self._set(event.new)

    def on_delete(self, event: DeleteEvent) -> None:
        try:
            self._gauge.remove(event.obj.namespace or "", event.obj.name)
        except KeyError:
            pass


def new_info_registry(kind: str) -> Registry:
    """Return a registry holding an info gauge for the kind."""
    registry = Registry()
    registry.register_observer(InfoGauge(kind))
    return registry
