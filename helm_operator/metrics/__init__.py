"""Metrics package.

Collectors are registered on a `Registry` that is shared by the controllers
of a process. Collectors that observe object events are compiled into a
`Predicate` consumed by the controllers' watches.
"""

from .registry import (
    Capability,
    CreateEvent,
    DeleteEvent,
    GenericEvent,
    Observer,
    Predicate,
    Registry,
    UpdateEvent,
)
from .info import InfoGauge, new_info_registry
from .reconcile import ReconcileMetrics
from .server import start_metrics_server

__all__ = [
    "Capability",
    "CreateEvent",
    "DeleteEvent",
    "GenericEvent",
    "Observer",
    "Predicate",
    "Registry",
    "UpdateEvent",
    "InfoGauge",
    "new_info_registry",
    "ReconcileMetrics",
    "start_metrics_server",
]
