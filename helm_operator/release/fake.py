"""In-memory action client that records calls, for use in tests.

Each operation appends to its own call log as well as to the ordered
`calls` log, then delegates to a replaceable handler. The default handlers
raise, so a test only sets up the operations it expects to be used.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from helm_operator.chart import Chart
from helm_operator.exceptions import OperatorException
from helm_operator.manifest import Resource

from .client import (
    ActionClient,
    ActionClientGetter,
    GetOptions,
    InstallOptions,
    Release,
    UninstallOptions,
    UninstallResult,
    UpgradeOptions,
)

__all__ = [
    "FakeActionClient",
    "FakeActionClientGetter",
    "GetCall",
    "InstallCall",
    "UpgradeCall",
    "UninstallCall",
    "ReconcileCall",
]


@dataclass(frozen=True)
class GetCall:
    name: str
    options: GetOptions | None


@dataclass(frozen=True)
class InstallCall:
    name: str
    namespace: str
    chart: Chart
    values: dict[str, Any]
    options: InstallOptions | None


@dataclass(frozen=True)
class UpgradeCall:
    name: str
    namespace: str
    chart: Chart
    values: dict[str, Any]
    options: UpgradeOptions | None


@dataclass(frozen=True)
class UninstallCall:
    name: str
    options: UninstallOptions | None


@dataclass(frozen=True)
class ReconcileCall:
    release: Release


Call = GetCall | InstallCall | UpgradeCall | UninstallCall | ReconcileCall


def _not_implemented(action: str) -> Callable[..., Awaitable[Any]]:
    async def handler(*args: Any) -> Any:
        raise OperatorException(f"{action} not implemented")

    return handler


@dataclass
class FakeActionClient(ActionClient):
    """Records every call and returns the result of its handler."""

    gets: list[GetCall] = field(default_factory=list)
    installs: list[InstallCall] = field(default_factory=list)
    upgrades: list[UpgradeCall] = field(default_factory=list)
    uninstalls: list[UninstallCall] = field(default_factory=list)
    reconciles: list[ReconcileCall] = field(default_factory=list)
    calls: list[Call] = field(default_factory=list)

    handle_get: Callable[[GetCall], Awaitable[Release]] = field(
        default_factory=lambda: _not_implemented("get")
    )
    handle_install: Callable[[InstallCall], Awaitable[Release]] = field(
        default_factory=lambda: _not_implemented("install")
    )
    handle_upgrade: Callable[[UpgradeCall], Awaitable[Release]] = field(
        default_factory=lambda: _not_implemented("upgrade")
    )
    handle_uninstall: Callable[[UninstallCall], Awaitable[UninstallResult]] = field(
        default_factory=lambda: _not_implemented("uninstall")
    )
    handle_reconcile: Callable[[ReconcileCall], Awaitable[None]] = field(
        default_factory=lambda: _not_implemented("reconcile")
    )

    async def get(self, name: str, options: GetOptions | None = None) -> Release:
        call = GetCall(name, options)
        self.gets.append(call)
        self.calls.append(call)
        return await self.handle_get(call)

    async def install(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: InstallOptions | None = None,
    ) -> Release:
        call = InstallCall(name, namespace, chart, values, options)
        self.installs.append(call)
        self.calls.append(call)
        return await self.handle_install(call)

    async def upgrade(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: UpgradeOptions | None = None,
    ) -> Release:
        call = UpgradeCall(name, namespace, chart, values, options)
        self.upgrades.append(call)
        self.calls.append(call)
        return await self.handle_upgrade(call)

    async def uninstall(
        self, name: str, options: UninstallOptions | None = None
    ) -> UninstallResult:
        call = UninstallCall(name, options)
        self.uninstalls.append(call)
        self.calls.append(call)
        return await self.handle_uninstall(call)

    async def reconcile(self, release: Release) -> None:
        call = ReconcileCall(release)
        self.reconciles.append(call)
        self.calls.append(call)
        await self.handle_reconcile(call)


class FakeActionClientGetter(ActionClientGetter):
    """Returns the same action client for every object, or raises an error."""

    def __init__(
        self, action_client: ActionClient, error: Exception | None = None
    ) -> None:
        self._action_client = action_client
        self._error = error

    def action_client_for(self, obj: Resource) -> ActionClient:
        if self._error is not None:
            raise self._error
        return self._action_client
