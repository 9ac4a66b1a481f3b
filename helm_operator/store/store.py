"""Store module for reading and writing cluster objects."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any

from helm_operator.manifest import GroupVersionKind, ObjectKey, Resource


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    """Callback receives (key, obj)."""

    OBJECT_UPDATED = "object_updated"
    """Callback receives (key, old_obj, new_obj)."""

    OBJECT_DELETED = "object_deleted"
    """Callback receives (key, obj)."""


class Store(ABC):
    """Abstract base class for the cluster object store with listener support.

    Objects returned by the store are copies; changes are only persisted by
    calling `update_object` or `update_status`.
    """

    @abstractmethod
    def add_object(self, obj: Resource) -> Resource:
        """Create an object, returning it with server assigned metadata."""

    @abstractmethod
    def get_object(self, key: ObjectKey) -> Resource | None:
        """Retrieve an object by key, or None if it does not exist."""

    @abstractmethod
    def update_object(self, obj: Resource) -> Resource:
        """Update the metadata and spec of an existing object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object's resource version is stale.
        """

    @abstractmethod
    def update_status(self, key: ObjectKey, status: dict[str, Any]) -> Resource:
        """Replace the status subresource of an existing object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def delete_object(self, key: ObjectKey) -> None:
        """Request deletion of an object.

        Objects with finalizers are only marked for deletion and are removed
        once the last finalizer is removed.
        """

    @abstractmethod
    def list_objects(self, gvk: GroupVersionKind | None = None) -> list[Resource]:
        """List all objects in the store, optionally filtered by kind."""

    @abstractmethod
    def add_listener(
        self, event: StoreEvent, callback: Callable[..., None]
    ) -> Callable[[], None]:
        """Register a callback for a specific event.

        Returns a callable that can be called to remove the listener.
        """
