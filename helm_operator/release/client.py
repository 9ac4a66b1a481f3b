"""Interface to the chart installation subsystem.

An `ActionClient` performs operations against the releases of a single
namespace. Every operation must be safe to retry: repeating a call after a
timeout or crash must not leave duplicate or inconsistent release state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from helm_operator.chart import Chart
from helm_operator.exceptions import InputException
from helm_operator.manifest import Resource, parse_manifest_kinds, GroupVersionKind

__all__ = [
    "ReleaseStatus",
    "Release",
    "UninstallResult",
    "GetOptions",
    "InstallOptions",
    "UpgradeOptions",
    "UninstallOptions",
    "ActionClient",
    "ActionClientGetter",
]


class ReleaseStatus(StrEnum):
    """Status of a release as reported by helm."""

    UNKNOWN = "unknown"
    DEPLOYED = "deployed"
    UNINSTALLED = "uninstalled"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    UNINSTALLING = "uninstalling"
    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"


@dataclass(frozen=True, kw_only=True)
class Release:
    """An installed instance of a chart."""

    name: str
    namespace: str
    chart_name: str
    chart_version: str
    revision: int
    status: ReleaseStatus = ReleaseStatus.UNKNOWN
    values: dict[str, Any] = field(default_factory=dict)
    manifest: str = ""
    """The rendered resources of the release as a multi-document YAML string."""

    @classmethod
    def parse_helm_json(cls, doc: dict[str, Any]) -> "Release":
        """Parse a release from the JSON output of a helm command."""
        if not (name := doc.get("name")):
            raise InputException(f"Invalid release missing name: {doc}")
        metadata = (doc.get("chart") or {}).get("metadata") or {}
        status = (doc.get("info") or {}).get("status", ReleaseStatus.UNKNOWN)
        try:
            release_status = ReleaseStatus(status)
        except ValueError:
            release_status = ReleaseStatus.UNKNOWN
        return cls(
            name=name,
            namespace=doc.get("namespace", ""),
            chart_name=metadata.get("name", ""),
            chart_version=str(metadata.get("version", "")),
            revision=int(doc.get("version", 0)),
            status=release_status,
            values=doc.get("config") or {},
            manifest=doc.get("manifest") or "",
        )

    @property
    def kinds(self) -> set[GroupVersionKind]:
        """The kinds of all resources rendered in the release manifest."""
        return parse_manifest_kinds(self.manifest)


@dataclass(frozen=True, kw_only=True)
class UninstallResult:
    """Result of uninstalling a release."""

    release: Release | None = None
    info: str = ""


@dataclass(frozen=True)
class GetOptions:
    """Options for looking up a release."""

    revision: int | None = None
    """Fetch a specific revision rather than the latest."""


@dataclass(frozen=True)
class InstallOptions:
    """Options for installing a release."""

    disable_hooks: bool = False


@dataclass(frozen=True)
class UpgradeOptions:
    """Options for upgrading a release."""

    disable_hooks: bool = False
    force: bool = False


@dataclass(frozen=True)
class UninstallOptions:
    """Options for uninstalling a release."""

    disable_hooks: bool = False


class ActionClient(ABC):
    """Performs release operations on behalf of a single managed object."""

    @abstractmethod
    async def get(self, name: str, options: GetOptions | None = None) -> Release:
        """Return the current release, raising ReleaseNotFoundError if absent."""

    @abstractmethod
    async def install(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: InstallOptions | None = None,
    ) -> Release:
        """Install a new release of the chart."""

    @abstractmethod
    async def upgrade(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: UpgradeOptions | None = None,
    ) -> Release:
        """Upgrade an existing release to the chart and values."""

    @abstractmethod
    async def uninstall(
        self, name: str, options: UninstallOptions | None = None
    ) -> UninstallResult:
        """Uninstall the release, raising ReleaseNotFoundError if absent."""

    @abstractmethod
    async def reconcile(self, release: Release) -> None:
        """Re-apply the release manifest to correct drift in live resources.

        The release revision is not changed.
        """


class ActionClientGetter(ABC):
    """Provides the action client for a managed object."""

    @abstractmethod
    def action_client_for(self, obj: Resource) -> ActionClient:
        """Return an action client scoped to the object's namespace."""
