"""Tests for the in memory store."""

from collections.abc import Callable
from typing import Any

import pytest

from helm_operator.exceptions import ConflictError, ObjectNotFoundError
from helm_operator.manifest import GroupVersionKind, Resource
from helm_operator.store import InMemoryStore, StoreEvent


def test_add_and_get_object(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    """Test adding and retrieving an object."""
    added = store.add_object(make_resource())
    assert added.metadata.uid
    assert added.metadata.generation == 1
    assert added.metadata.resource_version

    result = store.get_object(added.key)
    assert result == added

    # Returned objects are copies
    result.spec["replicaCount"] = 5
    assert store.get_object(added.key).spec == {"replicaCount": 1}


def test_add_duplicate(store: InMemoryStore, make_resource: Callable[..., Resource]) -> None:
    store.add_object(make_resource())
    with pytest.raises(ValueError, match="already exists"):
        store.add_object(make_resource())


def test_get_missing_object(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    assert store.get_object(make_resource().key) is None


def test_update_object(store: InMemoryStore, make_resource: Callable[..., Resource]) -> None:
    """Test spec changes bump the generation and resource version."""
    obj = store.add_object(make_resource())
    obj.spec = {"replicaCount": 2}
    updated = store.update_object(obj)
    assert updated.metadata.generation == 2
    assert updated.metadata.resource_version != obj.metadata.resource_version

    updated.metadata.annotations["example.com/a"] = "b"
    annotated = store.update_object(updated)
    assert annotated.metadata.generation == 2
    assert annotated.annotations == {"example.com/a": "b"}


def test_update_unchanged_object(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    """Test an update without changes does not fire an event."""
    events: list[Any] = []
    store.add_listener(StoreEvent.OBJECT_UPDATED, lambda *args: events.append(args))
    obj = store.add_object(make_resource())
    assert store.update_object(obj) == obj
    assert not events


def test_update_conflict(store: InMemoryStore, make_resource: Callable[..., Resource]) -> None:
    """Test updating a stale version of an object."""
    obj = store.add_object(make_resource())
    first = obj.copy()
    first.spec = {"replicaCount": 2}
    store.update_object(first)

    obj.spec = {"replicaCount": 3}
    with pytest.raises(ConflictError, match="stale"):
        store.update_object(obj)


def test_update_missing_object(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    with pytest.raises(ObjectNotFoundError):
        store.update_object(make_resource())
    with pytest.raises(ObjectNotFoundError):
        store.update_status(make_resource().key, {})


def test_update_status(store: InMemoryStore, make_resource: Callable[..., Resource]) -> None:
    """Test the status is written separately from the object."""
    obj = store.add_object(make_resource())
    updated = store.update_status(obj.key, {"conditions": []})
    assert updated.status == {"conditions": []}
    assert updated.metadata.generation == 1

    # Status is not overwritten by an object update
    updated.spec = {"replicaCount": 4}
    updated.status = None
    assert store.update_object(updated).status == {"conditions": []}


def test_delete_without_finalizers(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    deleted: list[Resource] = []
    store.add_listener(StoreEvent.OBJECT_DELETED, lambda key, obj: deleted.append(obj))
    obj = store.add_object(make_resource())
    store.delete_object(obj.key)
    assert store.get_object(obj.key) is None
    assert [d.name for d in deleted] == ["example"]


def test_delete_with_finalizer(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    """Test an object is only removed once its last finalizer is removed."""
    obj = make_resource()
    obj.add_finalizer("example.com/cleanup")
    obj = store.add_object(obj)

    store.delete_object(obj.key)
    marked = store.get_object(obj.key)
    assert marked is not None
    assert marked.is_deleting

    marked.remove_finalizer("example.com/cleanup")
    store.update_object(marked)
    assert store.get_object(obj.key) is None


def test_list_objects(store: InMemoryStore, make_resource: Callable[..., Resource]) -> None:
    other = GroupVersionKind("example.com", "v1", "Other")
    store.add_object(make_resource(name="a"))
    store.add_object(make_resource(name="b"))
    store.add_object(make_resource(name="c", gvk=other))
    assert len(store.list_objects()) == 3
    assert {obj.name for obj in store.list_objects(other)} == {"c"}


def test_listener_removal(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    events: list[Any] = []
    remove = store.add_listener(StoreEvent.OBJECT_ADDED, lambda *args: events.append(args))
    store.add_object(make_resource(name="a"))
    remove()
    store.add_object(make_resource(name="b"))
    assert len(events) == 1


def test_failing_listener(
    store: InMemoryStore, make_resource: Callable[..., Resource]
) -> None:
    """Test a failing listener does not prevent others from being called."""
    events: list[Any] = []

    def fail(*args: Any) -> None:
        raise ValueError("boom")

    store.add_listener(StoreEvent.OBJECT_ADDED, fail)
    store.add_listener(StoreEvent.OBJECT_ADDED, lambda *args: events.append(args))
    store.add_object(make_resource())
    assert len(events) == 1
