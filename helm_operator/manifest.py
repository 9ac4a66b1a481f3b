"""Representation of kubernetes objects handled by the operator.

The same `Resource` type is used both for the custom resources that declare a
release (the managed objects) and for the dependent objects rendered by a
chart. Only the fields the reconciler reads or writes are modeled; the
`spec` and `status` are kept as plain dictionaries.
"""

import copy
import datetime
from dataclasses import dataclass, field
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
import yaml

from .exceptions import InputException

__all__ = [
    "GroupVersionKind",
    "ObjectKey",
    "OwnerReference",
    "ObjectMeta",
    "Condition",
    "Resource",
    "parse_manifest_objects",
    "parse_manifest_kinds",
]

_LOGGER = logging.getLogger(__name__)

LIST_KIND = "List"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class GroupVersionKind:
    """Identifier for a kind of kubernetes resource."""

    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """Build from an `apiVersion` string such as `apps/v1` or `v1`."""
        group, _, version = api_version.rpartition("/")
        if not version:
            raise InputException(f"Invalid apiVersion '{api_version}' for {kind}")
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        """Return the apiVersion string for this kind."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def group_kind(self) -> str:
        """Return the kind qualified by its group e.g. `Deployment.apps`."""
        if self.group:
            return f"{self.kind}.{self.group}"
        return self.kind

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identifier for a single kubernetes object."""

    gvk: GroupVersionKind
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.gvk.group_kind}/{self.namespaced_name}"


@dataclass
class OwnerReference(BaseManifest):
    """A reference from a dependent object back to the object owning it."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    name: str
    uid: str | None = None
    controller: bool = False


@dataclass
class ObjectMeta(BaseManifest):
    """Standard kubernetes object metadata."""

    name: str
    namespace: str | None = None
    uid: str | None = None
    generation: int = 0
    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(
        metadata=field_options(alias="ownerReferences"), default_factory=list
    )
    deletion_timestamp: str | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )


@dataclass
class Condition(BaseManifest):
    """A status condition on a managed object."""

    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_transition_time: str | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )

    def same_state(self, other: "Condition") -> bool:
        """Return True if the conditions only differ in their transition time."""
        return (self.type, self.status, self.reason, self.message) == (
            other.type,
            other.status,
            other.reason,
            other.message,
        )


@dataclass
class Resource(BaseManifest):
    """A kubernetes object."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    """The apiVersion of the object."""

    kind: str
    """The kind of the object."""

    metadata: ObjectMeta
    """Standard object metadata."""

    spec: dict[str, Any] | None = None
    """The spec of the object, for a managed object this holds the chart values."""

    status: dict[str, Any] | None = None
    """The status subresource of the object."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Resource":
        """Parse a Resource from a raw kubernetes object."""
        if not doc.get("apiVersion"):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        if not doc.get("kind"):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (metadata := doc.get("metadata")) or not metadata.get("name"):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        return cls.from_dict(doc)

    def to_doc(self) -> dict[str, Any]:
        """Return the raw kubernetes object."""
        return self.to_dict()

    def copy(self) -> "Resource":
        """Return a deep copy that may be modified without affecting this one."""
        return copy.deepcopy(self)

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version(self.api_version, self.kind)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.gvk, self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str | None:
        return self.metadata.namespace

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    @property
    def values(self) -> dict[str, Any]:
        """The chart values embedded in the spec of a managed object."""
        return copy.deepcopy(self.spec or {})

    @property
    def is_deleting(self) -> bool:
        """Return True if the object has been marked for deletion."""
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add the finalizer, returning True if the object was changed."""
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove the finalizer, returning True if the object was changed."""
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [
            f for f in self.metadata.finalizers if f != finalizer
        ]
        return True

    def owner_reference(self, controller: bool = True) -> OwnerReference:
        """Return a reference to this object for use by dependent objects."""
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.metadata.uid,
            controller=controller,
        )

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the status condition of the specified type, if present."""
        for cond in (self.status or {}).get("conditions", []):
            if cond.get("type") == condition_type:
                return Condition.from_dict(cond)
        return None


def now_timestamp() -> str:
    """Return the current time formatted as a kubernetes timestamp."""
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_manifest_objects(manifest: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML manifest into a flat list of objects.

    Empty documents are skipped and objects of kind `List` are replaced by
    their items.
    """
    try:
        docs = list(yaml.load_all(manifest, Loader=yaml.SafeLoader))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse release manifest: {err}") from err
    objects: list[dict[str, Any]] = []
    for doc in docs:
        if not doc:
            continue
        if not isinstance(doc, dict):
            raise InputException(f"Invalid manifest document: {doc}")
        if doc.get("kind") == LIST_KIND and isinstance(doc.get("items"), list):
            for item in doc["items"]:
                if not item:
                    continue
                if not isinstance(item, dict):
                    raise InputException(f"Invalid item in manifest List: {item}")
                objects.append(item)
            continue
        objects.append(doc)
    for obj in objects:
        if not obj.get("apiVersion") or not obj.get("kind"):
            raise InputException(f"Invalid object missing apiVersion or kind: {obj}")
    return objects


def parse_manifest_kinds(manifest: str) -> set[GroupVersionKind]:
    """Return the set of kinds of every object in a rendered manifest."""
    return {
        GroupVersionKind.from_api_version(obj["apiVersion"], obj["kind"])
        for obj in parse_manifest_objects(manifest)
    }
