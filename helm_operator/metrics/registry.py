"""Registry of metric collectors and the event predicate built from them."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Flag, auto
import logging
from typing import ClassVar

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.registry import Collector

from helm_operator.manifest import Resource

__all__ = [
    "Capability",
    "CreateEvent",
    "UpdateEvent",
    "DeleteEvent",
    "GenericEvent",
    "Observer",
    "Predicate",
    "Registry",
]

_LOGGER = logging.getLogger(__name__)


class Capability(Flag):
    """The object events an observer handles."""

    CREATE = auto()
    UPDATE = auto()
    DELETE = auto()
    GENERIC = auto()


@dataclass(frozen=True)
class CreateEvent:
    obj: Resource


@dataclass(frozen=True)
class UpdateEvent:
    old: Resource
    new: Resource


@dataclass(frozen=True)
class DeleteEvent:
    obj: Resource


@dataclass(frozen=True)
class GenericEvent:
    obj: Resource


class Observer:
    """A metric source that is updated from object events.

    Subclasses declare the events they handle in `capabilities` and override
    the matching `on_*` methods.
    """

    capabilities: ClassVar[Capability] = Capability(0)

    def collectors(self) -> Iterable[Collector]:
        """The prometheus collectors exposing this observer's values."""
        return ()

    def on_create(self, event: CreateEvent) -> None:
        """Handle an object being created."""

    def on_update(self, event: UpdateEvent) -> None:
        """Handle an object being updated."""

    def on_delete(self, event: DeleteEvent) -> None:
        """Handle an object being deleted."""

    def on_generic(self, event: GenericEvent) -> None:
        """Handle an event that is not a create, update or delete."""


def _notify(observers: Iterable[Observer], method: str, event: object) -> None:
    for observer in observers:
        try:
            getattr(observer, method)(event)
        except Exception:
            _LOGGER.exception(
                "Metrics observer %s failed handling %s",
                type(observer).__name__,
                type(event).__name__,
            )


@dataclass(frozen=True)
class Predicate:
    """Admission predicate for watch events that feeds the observers.

    Every method always returns True: observing events never filters them.
    """

    create_observers: tuple[Observer, ...] = ()
    update_observers: tuple[Observer, ...] = ()
    delete_observers: tuple[Observer, ...] = ()
    generic_observers: tuple[Observer, ...] = ()

    def create(self, event: CreateEvent) -> bool:
        _notify(self.create_observers, "on_create", event)
        return True

    def update(self, event: UpdateEvent) -> bool:
        _notify(self.update_observers, "on_update", event)
        return True

    def delete(self, event: DeleteEvent) -> bool:
        _notify(self.delete_observers, "on_delete", event)
        return True

    def generic(self, event: GenericEvent) -> bool:
        _notify(self.generic_observers, "on_generic", event)
        return True


class Registry:
    """A collection of metric collectors exposed together."""

    def __init__(self) -> None:
        """Initialize Registry."""
        self._registry = CollectorRegistry()
        self._observers: list[Observer] = []

    @property
    def collector_registry(self) -> CollectorRegistry:
        """The underlying prometheus registry, e.g. for serving over http."""
        return self._registry

    def register(self, collector: Collector) -> None:
        """Register a plain prometheus collector.

        Raises:
            ValueError: If the collector's metric names are already registered.
        """
        self._registry.register(collector)

    def register_observer(self, observer: Observer) -> None:
        """Register an observer and its collectors."""
        for collector in observer.collectors():
            self.register(collector)
        self._observers.append(observer)
        _LOGGER.debug(
            "Registered metrics observer %s (%s)",
            type(observer).__name__,
            observer.capabilities,
        )

    def predicate(self, observers: Iterable[Observer] | None = None) -> Predicate:
        """Compile observers into a single predicate.

        All registered observers are used unless a subset is given, e.g. the
        observers of a single kind.
        """
        selected = self._observers if observers is None else list(observers)

        def with_capability(capability: Capability) -> tuple[Observer, ...]:
            return tuple(o for o in selected if capability in o.capabilities)

        return Predicate(
            create_observers=with_capability(Capability.CREATE),
            update_observers=with_capability(Capability.UPDATE),
            delete_observers=with_capability(Capability.DELETE),
            generic_observers=with_capability(Capability.GENERIC),
        )

    def exposition(self) -> bytes:
        """Return the current values in the prometheus text format."""
        return generate_latest(self._registry)
