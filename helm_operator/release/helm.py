"""Action client that drives the `helm` and `kubectl` command line tools.

Every operation maps to a single helm invocation with JSON output:

```
helm status <name> --namespace <ns> --output json
helm install <name> <chart> --namespace <ns> --values <file> --output json
helm upgrade <name> <chart> --namespace <ns> --values <file> --output json
helm uninstall <name> --namespace <ns>
```

Drift correction re-applies the stored release manifest with
`kubectl apply`, which leaves the release revision untouched.
"""

import json
import logging
from pathlib import Path
import tempfile
from typing import Any

import aiofiles
import yaml

from helm_operator import command
from helm_operator.chart import Chart
from helm_operator.exceptions import HelmException, InputException, ReleaseNotFoundError
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
    "HelmActionClient",
    "HelmActionClientGetter",
]

_LOGGER = logging.getLogger(__name__)

HELM_BIN = "helm"
KUBECTL_BIN = "kubectl"
FIELD_MANAGER = "helm-operator"

# Only the release specific message, other lookups such as a missing kube
# context or namespace also report "not found"
_RELEASE_NOT_FOUND = "release: not found"


def _is_not_found(err: HelmException) -> bool:
    return _RELEASE_NOT_FOUND in str(err).lower()


def _parse_release(output: str) -> Release:
    try:
        doc = json.loads(output)
    except json.JSONDecodeError as err:
        raise HelmException(f"Unable to parse helm output: {err}") from err
    if not isinstance(doc, dict):
        raise HelmException(f"Unexpected helm output: {output}")
    try:
        return Release.parse_helm_json(doc)
    except InputException as err:
        raise HelmException(str(err)) from err


class HelmActionClient(ActionClient):
    """Performs release operations within a namespace using the helm binary."""

    def __init__(
        self,
        namespace: str,
        tmp_dir: Path,
        timeout: float = command.DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize HelmActionClient.

        Args:
            namespace: The namespace holding the releases
            tmp_dir: A directory for writing values files
            timeout: Seconds to wait for any single command
        """
        self._namespace = namespace
        self._tmp_dir = tmp_dir
        self._timeout = timeout

    def _command(self, args: list[str]) -> command.Command:
        return command.Command(args, exc=HelmException, timeout=self._timeout)

    async def _write_values(self, name: str, values: dict[str, Any]) -> Path:
        values_path = self._tmp_dir / f"{self._namespace}-{name}-values.yaml"
        async with aiofiles.open(values_path, mode="w") as values_file:
            await values_file.write(yaml.dump(values, sort_keys=False))
        return values_path

    async def get(self, name: str, options: GetOptions | None = None) -> Release:
        """Return the current release, raising ReleaseNotFoundError if absent."""
        options = options or GetOptions()
        args = [
            HELM_BIN,
            "status",
            name,
            "--namespace",
            self._namespace,
            "--output",
            "json",
        ]
        if options.revision is not None:
            args.extend(["--revision", str(options.revision)])
        try:
            output = await command.run(self._command(args))
        except HelmException as err:
            if _is_not_found(err):
                raise ReleaseNotFoundError(name) from err
            raise
        return _parse_release(output)

    async def install(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: InstallOptions | None = None,
    ) -> Release:
        """Install a new release of the chart."""
        options = options or InstallOptions()
        values_path = await self._write_values(name, values)
        args = [
            HELM_BIN,
            "install",
            name,
            str(chart.path),
            "--namespace",
            namespace,
            "--values",
            str(values_path),
            "--output",
            "json",
        ]
        if options.disable_hooks:
            args.append("--no-hooks")
        return _parse_release(await command.run(self._command(args)))

    async def upgrade(
        self,
        name: str,
        namespace: str,
        chart: Chart,
        values: dict[str, Any],
        options: UpgradeOptions | None = None,
    ) -> Release:
        """Upgrade an existing release to the chart and values."""
        options = options or UpgradeOptions()
        values_path = await self._write_values(name, values)
        args = [
            HELM_BIN,
            "upgrade",
            name,
            str(chart.path),
            "--namespace",
            namespace,
            "--values",
            str(values_path),
            "--reset-values",
            "--output",
            "json",
        ]
        if options.disable_hooks:
            args.append("--no-hooks")
        if options.force:
            args.append("--force")
        return _parse_release(await command.run(self._command(args)))

    async def uninstall(
        self, name: str, options: UninstallOptions | None = None
    ) -> UninstallResult:
        """Uninstall the release, raising ReleaseNotFoundError if absent."""
        options = options or UninstallOptions()
        args = [HELM_BIN, "uninstall", name, "--namespace", self._namespace]
        if options.disable_hooks:
            args.append("--no-hooks")
        try:
            output = await command.run(self._command(args))
        except HelmException as err:
            if _is_not_found(err):
                raise ReleaseNotFoundError(name) from err
            raise
        return UninstallResult(info=output.strip())

    async def reconcile(self, release: Release) -> None:
        """Re-apply the release manifest to correct drift in live resources."""
        apply = self._command(
            [
                KUBECTL_BIN,
                "apply",
                "--namespace",
                release.namespace or self._namespace,
                "--field-manager",
                FIELD_MANAGER,
                "--filename",
                "-",
            ]
        )
        if release.manifest:
            await command.run(apply, stdin=release.manifest.encode("utf-8"))
            return
        # Status output may omit the manifest, so read it from the release
        get_manifest = self._command(
            [
                HELM_BIN,
                "get",
                "manifest",
                release.name,
                "--namespace",
                self._namespace,
                "--revision",
                str(release.revision),
            ]
        )
        await command.run_piped([get_manifest, apply])


class HelmActionClientGetter(ActionClientGetter):
    """Creates helm backed action clients for managed objects."""

    def __init__(
        self, tmp_dir: Path | None = None, timeout: float = command.DEFAULT_TIMEOUT
    ) -> None:
        """Initialize HelmActionClientGetter."""
        self._tmp_dir = tmp_dir or Path(tempfile.mkdtemp(prefix="helm-operator-"))
        self._timeout = timeout

    def action_client_for(self, obj: Resource) -> ActionClient:
        """Return an action client scoped to the object's namespace."""
        if not obj.namespace:
            raise InputException(f"Object {obj.key} must be namespaced")
        return HelmActionClient(obj.namespace, self._tmp_dir, timeout=self._timeout)
