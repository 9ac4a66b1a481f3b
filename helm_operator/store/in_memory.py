"""Module for in memory object store."""

from collections import defaultdict
from collections.abc import Callable
import itertools
import logging
from typing import Any, DefaultDict
import uuid

from helm_operator.exceptions import ConflictError, ObjectNotFoundError
from helm_operator.manifest import (
    GroupVersionKind,
    ObjectKey,
    Resource,
    now_timestamp,
)

from .store import Store, StoreEvent


_LOGGER = logging.getLogger(__name__)


def _content(obj: Resource) -> tuple[Any, Any]:
    """Return the user writable content of an object for change detection."""
    metadata = obj.metadata.to_dict()
    metadata.pop("resourceVersion", None)
    metadata.pop("generation", None)
    return metadata, obj.spec


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Follows the api server semantics the reconciler depends on: optimistic
    concurrency on resource versions, generation bumps on spec changes,
    a separate status subresource and finalizer gated deletion.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[ObjectKey, Resource] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def add_object(self, obj: Resource) -> Resource:
        """Create an object, returning it with server assigned metadata."""
        key = obj.key
        if key in self._objects:
            raise ValueError(f"Object {key} already exists")
        stored = obj.copy()
        stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
        stored.metadata.generation = 1
        stored.metadata.resource_version = self._next_version()
        stored.metadata.deletion_timestamp = None
        _LOGGER.debug("Adding object %s to store", key)
        self._objects[key] = stored
        self._fire_event(StoreEvent.OBJECT_ADDED, key, stored.copy())
        return stored.copy()

    def get_object(self, key: ObjectKey) -> Resource | None:
        """Retrieve an object by key, or None if it does not exist."""
        if (obj := self._objects.get(key)) is None:
            return None
        return obj.copy()

    def _existing(self, key: ObjectKey) -> Resource:
        if (existing := self._objects.get(key)) is None:
            raise ObjectNotFoundError(f"Object {key} not found")
        return existing

    def update_object(self, obj: Resource) -> Resource:
        """Update the metadata and spec of an existing object."""
        key = obj.key
        existing = self._existing(key)
        actual = existing.metadata.resource_version or ""
        if obj.metadata.resource_version != actual:
            raise ConflictError(str(key), obj.metadata.resource_version or "", actual)

        updated = obj.copy()
        updated.status = existing.status
        updated.metadata.uid = existing.metadata.uid
        updated.metadata.deletion_timestamp = existing.metadata.deletion_timestamp
        if _content(updated) == _content(existing):
            _LOGGER.debug("Object %s unchanged, skipping update", key)
            return existing.copy()
        updated.metadata.generation = existing.metadata.generation
        if updated.spec != existing.spec:
            updated.metadata.generation += 1
        updated.metadata.resource_version = self._next_version()

        if updated.is_deleting and not updated.metadata.finalizers:
            _LOGGER.debug("Last finalizer removed from %s, deleting", key)
            del self._objects[key]
            self._fire_event(StoreEvent.OBJECT_DELETED, key, updated.copy())
            return updated.copy()

        _LOGGER.debug("Updating object %s in store", key)
        self._objects[key] = updated
        self._fire_event(StoreEvent.OBJECT_UPDATED, key, existing.copy(), updated.copy())
        return updated.copy()

    def update_status(self, key: ObjectKey, status: dict[str, Any]) -> Resource:
        """Replace the status subresource of an existing object."""
        existing = self._existing(key)
        if existing.status == status:
            return existing.copy()
        updated = existing.copy()
        updated.status = status
        updated.metadata.resource_version = self._next_version()
        _LOGGER.debug("Updating status for object %s", key)
        self._objects[key] = updated
        self._fire_event(StoreEvent.OBJECT_UPDATED, key, existing.copy(), updated.copy())
        return updated.copy()

    def delete_object(self, key: ObjectKey) -> None:
        """Request deletion of an object."""
        existing = self._existing(key)
        if not existing.metadata.finalizers:
            _LOGGER.debug("Deleting object %s", key)
            del self._objects[key]
            self._fire_event(StoreEvent.OBJECT_DELETED, key, existing.copy())
            return
        if existing.is_deleting:
            return
        _LOGGER.debug(
            "Marking object %s for deletion, finalizers %s",
            key,
            existing.metadata.finalizers,
        )
        updated = existing.copy()
        updated.metadata.deletion_timestamp = now_timestamp()
        updated.metadata.resource_version = self._next_version()
        self._objects[key] = updated
        self._fire_event(StoreEvent.OBJECT_UPDATED, key, existing.copy(), updated.copy())

    def list_objects(self, gvk: GroupVersionKind | None = None) -> list[Resource]:
        """List all objects in the store, optionally filtered by kind."""
        return [
            obj.copy()
            for key, obj in self._objects.items()
            if gvk is None or key.gvk == gvk
        ]

    def add_listener(
        self, event: StoreEvent, callback: Callable[..., None]
    ) -> Callable[[], None]:
        """Register a callback for a specific event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
