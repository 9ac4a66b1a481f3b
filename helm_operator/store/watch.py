"""Kind level watches over the objects in a store."""

from abc import ABC, abstractmethod
from collections.abc import Callable
import logging

from helm_operator.manifest import GroupVersionKind, ObjectKey, Resource

from .store import Store, StoreEvent

__all__ = [
    "WatchSource",
    "StoreWatchSource",
]

_LOGGER = logging.getLogger(__name__)

WatchHandler = Callable[[Resource], None]


class WatchSource(ABC):
    """A source of change notifications for all objects of a kind."""

    @abstractmethod
    def watch(self, gvk: GroupVersionKind, handler: WatchHandler) -> Callable[[], None]:
        """Call the handler with the object on every create, update or delete.

        Returns a callable that stops the watch.
        """


class StoreWatchSource(WatchSource):
    """Watches objects of a kind using the listeners of a Store."""

    def __init__(self, store: Store) -> None:
        """Initialize StoreWatchSource."""
        self._store = store

    def watch(self, gvk: GroupVersionKind, handler: WatchHandler) -> Callable[[], None]:
        """Call the handler with the object on every create, update or delete."""
        _LOGGER.debug("Starting watch for %s", gvk)

        def on_added(key: ObjectKey, obj: Resource) -> None:
            if key.gvk == gvk:
                handler(obj)

        def on_updated(key: ObjectKey, old: Resource, new: Resource) -> None:
            if key.gvk == gvk:
                handler(new)

        removers = [
            self._store.add_listener(StoreEvent.OBJECT_ADDED, on_added),
            self._store.add_listener(StoreEvent.OBJECT_UPDATED, on_updated),
            self._store.add_listener(StoreEvent.OBJECT_DELETED, on_added),
        ]

        def remove() -> None:
            _LOGGER.debug("Stopping watch for %s", gvk)
            for remover in removers:
                remover()

        return remove
