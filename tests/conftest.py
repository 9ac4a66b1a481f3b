"""Shared fixtures for the helm-operator tests."""

import dataclasses
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from helm_operator.chart import Chart
from helm_operator.exceptions import ReleaseNotFoundError
from helm_operator.manifest import GroupVersionKind, ObjectMeta, Resource
from helm_operator.reconciler import ReleaseLockManager
from helm_operator.release import Release, ReleaseStatus, UninstallResult
from helm_operator.release.fake import (
    FakeActionClient,
    FakeActionClientGetter,
    GetCall,
    InstallCall,
    ReconcileCall,
    UninstallCall,
    UpgradeCall,
)
from helm_operator.store import InMemoryStore
from helm_operator.watches import WatchDescriptor

MEMCACHED_GVK = GroupVersionKind("cache.example.com", "v1alpha1", "Memcached")

DEPLOYMENT_MANIFEST = """\
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {name}
  namespace: {namespace}
---
apiVersion: v1
kind: Service
metadata:
  name: {name}
  namespace: {namespace}
"""


class ReleaseBackend:
    """Keeps releases in memory and serves the fake action client calls."""

    def __init__(self, manifest: str = DEPLOYMENT_MANIFEST) -> None:
        self.releases: dict[str, Release] = {}
        self.manifest = manifest

    def attach(self, client: FakeActionClient) -> FakeActionClient:
        client.handle_get = self.get
        client.handle_install = self.install
        client.handle_upgrade = self.upgrade
        client.handle_uninstall = self.uninstall
        client.handle_reconcile = self.reconcile
        return client

    def _render(self, name: str, namespace: str) -> str:
        return self.manifest.format(name=name, namespace=namespace)

    async def get(self, call: GetCall) -> Release:
        if (release := self.releases.get(call.name)) is None:
            raise ReleaseNotFoundError(call.name)
        return release

    async def install(self, call: InstallCall) -> Release:
        release = Release(
            name=call.name,
            namespace=call.namespace,
            chart_name=call.chart.name,
            chart_version=call.chart.version,
            revision=1,
            status=ReleaseStatus.DEPLOYED,
            values=call.values,
            manifest=self._render(call.name, call.namespace),
        )
        self.releases[call.name] = release
        return release

    async def upgrade(self, call: UpgradeCall) -> Release:
        if (previous := self.releases.get(call.name)) is None:
            raise ReleaseNotFoundError(call.name)
        release = dataclasses.replace(
            previous,
            chart_version=call.chart.version,
            revision=previous.revision + 1,
            values=call.values,
            manifest=self._render(call.name, call.namespace),
        )
        self.releases[call.name] = release
        return release

    async def uninstall(self, call: UninstallCall) -> UninstallResult:
        if (release := self.releases.pop(call.name, None)) is None:
            raise ReleaseNotFoundError(call.name)
        return UninstallResult(release=release, info=f"release {call.name} uninstalled")

    async def reconcile(self, call: ReconcileCall) -> None:
        return None


@pytest.fixture
def store() -> InMemoryStore:
    """Create an in-memory store for testing."""
    return InMemoryStore()


@pytest.fixture
def chart(tmp_path: Path) -> Chart:
    return Chart(name="memcached", version="0.1.0", path=tmp_path)


@pytest.fixture
def descriptor(chart: Chart) -> WatchDescriptor:
    return WatchDescriptor(gvk=MEMCACHED_GVK, chart=chart)


@pytest.fixture
def backend() -> ReleaseBackend:
    return ReleaseBackend()


@pytest.fixture
def client(backend: ReleaseBackend) -> FakeActionClient:
    """A fake action client backed by in memory releases."""
    return backend.attach(FakeActionClient())


@pytest.fixture
def client_getter(client: FakeActionClient) -> FakeActionClientGetter:
    return FakeActionClientGetter(client)


@pytest.fixture
def locks() -> ReleaseLockManager:
    return ReleaseLockManager()


@pytest.fixture
def make_resource() -> Callable[..., Resource]:
    """Return a factory for managed objects."""

    def _make_resource(
        name: str = "example",
        namespace: str | None = "default",
        spec: dict[str, Any] | None = None,
        annotations: dict[str, str] | None = None,
        gvk: GroupVersionKind = MEMCACHED_GVK,
    ) -> Resource:
        return Resource(
            api_version=gvk.api_version,
            kind=gvk.kind,
            metadata=ObjectMeta(
                name=name, namespace=namespace, annotations=dict(annotations or {})
            ),
            spec=spec if spec is not None else {"replicaCount": 1},
        )

    return _make_resource


@pytest.fixture
def gvk() -> GroupVersionKind:
    return MEMCACHED_GVK
