"""Watches on the kinds of resources rendered by a release.

After every successful reconcile the release manifest is parsed into the set
of kinds it contains. A watch is started the first time a kind is seen, and
events on any object of that kind are mapped back to the managed object
that owns it, triggering a reconcile that corrects drift.

Kind level watches are never stopped while the manager is running: other
managed objects may still render the same kind. Only the per object record
of kinds is pruned when an object is deleted.
"""

from collections.abc import Callable
import logging

from helm_operator.annotation import PRIMARY_RESOURCE, PRIMARY_RESOURCE_TYPE
from helm_operator.exceptions import InputException
from helm_operator.manifest import (
    GroupVersionKind,
    ObjectKey,
    Resource,
    parse_manifest_kinds,
)
from helm_operator.store.watch import WatchSource

__all__ = ["DependentWatchManager"]

_LOGGER = logging.getLogger(__name__)


class DependentWatchManager:
    """Tracks the dependent kinds watched on behalf of managed objects."""

    def __init__(
        self,
        owner_gvk: GroupVersionKind,
        source: WatchSource,
        enqueue: Callable[[ObjectKey], None],
    ) -> None:
        """Initialize DependentWatchManager.

        Args:
            owner_gvk: The kind of the managed objects owning the dependents
            source: Used to start a watch on a dependent kind
            enqueue: Called with the key of a managed object to reconcile
        """
        self._owner_gvk = owner_gvk
        self._source = source
        self._enqueue = enqueue
        self._watches: dict[GroupVersionKind, Callable[[], None]] = {}
        self._objects: dict[ObjectKey, frozenset[GroupVersionKind]] = {}

    @property
    def watched_kinds(self) -> frozenset[GroupVersionKind]:
        """All kinds with an active watch."""
        return frozenset(self._watches)

    def kinds_for(self, key: ObjectKey) -> frozenset[GroupVersionKind]:
        """The kinds currently recorded for a managed object."""
        return self._objects.get(key, frozenset())

    def update(self, owner: Resource, manifest: str) -> set[GroupVersionKind]:
        """Record the kinds in the owner's release manifest.

        Returns the kinds for which a new watch was started.
        """
        kinds = parse_manifest_kinds(manifest)
        kinds.discard(self._owner_gvk)
        added: set[GroupVersionKind] = set()
        for gvk in sorted(kinds - set(self._watches)):
            _LOGGER.info("Watching dependent resource %s for %s", gvk, self._owner_gvk)
            self._watches[gvk] = self._source.watch(gvk, self._on_dependent_event)
            added.add(gvk)
        self._objects[owner.key] = frozenset(kinds)
        return added

    def forget(self, key: ObjectKey) -> None:
        """Drop the record of kinds for a managed object that is gone."""
        if self._objects.pop(key, None) is not None:
            _LOGGER.debug("Removed dependent watch record for %s", key)

    def owner_key(self, obj: Resource) -> ObjectKey | None:
        """Return the key of the managed object owning a dependent object.

        The controller owner reference is used when present, otherwise the
        primary resource annotations.
        """
        for ref in obj.metadata.owner_references:
            if not ref.controller:
                continue
            try:
                gvk = GroupVersionKind.from_api_version(ref.api_version, ref.kind)
            except InputException:
                continue
            if gvk == self._owner_gvk:
                return ObjectKey(self._owner_gvk, obj.namespace, ref.name)
        primary_type = obj.annotations.get(PRIMARY_RESOURCE_TYPE)
        primary = obj.annotations.get(PRIMARY_RESOURCE)
        if primary is None or primary_type != self._owner_gvk.group_kind:
            return None
        namespace, _, name = primary.rpartition("/")
        return ObjectKey(self._owner_gvk, namespace or None, name)

    def _on_dependent_event(self, obj: Resource) -> None:
        if (key := self.owner_key(obj)) is None:
            return
        _LOGGER.debug("Dependent %s changed, reconciling %s", obj.key, key)
        self._enqueue(key)

    def close(self) -> None:
        """Stop all watches."""
        for remove in self._watches.values():
            remove()
        self._watches.clear()
        self._objects.clear()
