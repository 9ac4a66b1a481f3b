"""Loading of the watches file.

The watches file is a YAML list with one entry per kind of custom resource
the operator manages. Each entry is turned into an immutable `WatchDescriptor`
that parameterizes a single reconciler.

```yaml
- group: cache.example.com
  version: v1alpha1
  kind: Memcached
  chart: helm-charts/memcached
  reconcilePeriod: 1m
  maxConcurrentReconciles: 2
  watchDependentResources: true
  overrideValues:
    image:
      repository: $MEMCACHED_IMAGE
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
from typing import Any

import aiofiles
from mashumaro import field_options
from mashumaro.exceptions import InvalidFieldValue, MissingField
import yaml

from .annotation import (
    DEFAULT_INSTALL_ANNOTATIONS,
    DEFAULT_UNINSTALL_ANNOTATIONS,
    DEFAULT_UPGRADE_ANNOTATIONS,
)
from .chart import Chart, load_chart
from .exceptions import InputException
from .manifest import BaseManifest, GroupVersionKind
from .values import expand_env

__all__ = [
    "WatchDefaults",
    "WatchDescriptor",
    "WatchEntry",
    "load_watches",
    "parse_duration",
]

_LOGGER = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str | int | float) -> float:
    """Parse a duration such as `1h30m`, `45s` or `500ms` into seconds.

    Bare numbers are interpreted as seconds.
    """
    if isinstance(value, (int, float)):
        return float(value)
    value = value.strip()
    if value in ("0", ""):
        return 0.0
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(value) or pos == 0:
        raise InputException(f"Invalid duration '{value}'")
    return total


@dataclass(frozen=True)
class WatchDefaults:
    """Values applied to watch entries that do not specify them."""

    reconcile_period: float = 0.0
    """Seconds between periodic reconciles, 0 disables periodic resync."""

    max_concurrent_reconciles: int = 1
    """Number of objects of a kind reconciled in parallel."""


@dataclass
class WatchEntry(BaseManifest):
    """A single entry as written in the watches file."""

    version: str
    kind: str
    chart: str
    group: str = ""
    reconcile_period: str | None = field(
        metadata=field_options(alias="reconcilePeriod"), default=None
    )
    max_concurrent_reconciles: int | None = field(
        metadata=field_options(alias="maxConcurrentReconciles"), default=None
    )
    watch_dependent_resources: bool = field(
        metadata=field_options(alias="watchDependentResources"), default=True
    )
    override_values: dict[str, Any] = field(
        metadata=field_options(alias="overrideValues"), default_factory=dict
    )


@dataclass(frozen=True, kw_only=True)
class WatchDescriptor:
    """Immutable configuration for the reconciler of a single kind."""

    gvk: GroupVersionKind
    """The kind of custom resource being reconciled."""

    chart: Chart
    """The chart installed for every object of the kind."""

    override_values: dict[str, Any] = field(default_factory=dict)
    """Values that take precedence over the object's spec."""

    reconcile_period: float = 0.0
    """Seconds between periodic reconciles, 0 disables periodic resync."""

    max_concurrent_reconciles: int = 1
    """Number of objects of this kind reconciled in parallel."""

    watch_dependent_resources: bool = True
    """Watch the kinds rendered by the chart to correct drift promptly."""

    install_annotations: tuple[str, ...] = DEFAULT_INSTALL_ANNOTATIONS
    upgrade_annotations: tuple[str, ...] = DEFAULT_UPGRADE_ANNOTATIONS
    uninstall_annotations: tuple[str, ...] = DEFAULT_UNINSTALL_ANNOTATIONS


async def _descriptor(
    entry: WatchEntry, base_dir: Path, defaults: WatchDefaults
) -> WatchDescriptor:
    """Build a descriptor from a parsed watches entry."""
    gvk = GroupVersionKind(group=entry.group, version=entry.version, kind=entry.kind)
    reconcile_period = defaults.reconcile_period
    if entry.reconcile_period is not None:
        reconcile_period = parse_duration(entry.reconcile_period)
    if reconcile_period < 0:
        raise InputException(f"Watch {gvk} has a negative reconcilePeriod")
    max_concurrent = defaults.max_concurrent_reconciles
    if entry.max_concurrent_reconciles is not None:
        max_concurrent = entry.max_concurrent_reconciles
    if max_concurrent < 1:
        raise InputException(
            f"Watch {gvk} maxConcurrentReconciles must be positive, got {max_concurrent}"
        )
    chart_path = Path(entry.chart)
    if not chart_path.is_absolute():
        chart_path = base_dir / chart_path
    return WatchDescriptor(
        gvk=gvk,
        chart=await load_chart(chart_path),
        override_values=expand_env(entry.override_values),
        reconcile_period=reconcile_period,
        max_concurrent_reconciles=max_concurrent,
        watch_dependent_resources=entry.watch_dependent_resources,
    )


def parse_watches(content: str) -> list[WatchEntry]:
    """Parse the contents of a watches file into its entries."""
    try:
        doc = yaml.load(content, Loader=yaml.SafeLoader)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse watches file: {err}") from err
    if doc is None:
        return []
    if not isinstance(doc, list):
        raise InputException("Invalid watches file: expected a list of entries")
    entries: list[WatchEntry] = []
    for subdoc in doc:
        if not isinstance(subdoc, dict):
            raise InputException(f"Invalid watches entry: {subdoc}")
        for required in ("version", "kind", "chart"):
            if not subdoc.get(required):
                raise InputException(f"Invalid watches entry missing {required}: {subdoc}")
        if isinstance(period := subdoc.get("reconcilePeriod"), (int, float)):
            subdoc = {**subdoc, "reconcilePeriod": f"{period}s"}
        try:
            entries.append(WatchEntry.from_dict(subdoc))
        except (InvalidFieldValue, MissingField) as err:
            raise InputException(f"Invalid watches entry {subdoc}: {err}") from err
    return entries


async def load_watches(
    path: Path, defaults: WatchDefaults | None = None
) -> list[WatchDescriptor]:
    """Load the watch descriptors from a watches file.

    Relative chart paths are resolved against the directory holding the file.
    """
    defaults = defaults or WatchDefaults()
    async with aiofiles.open(path) as watches_file:
        content = await watches_file.read()
    entries = parse_watches(content)
    descriptors: list[WatchDescriptor] = []
    seen: set[GroupVersionKind] = set()
    for entry in entries:
        descriptor = await _descriptor(entry, path.parent, defaults)
        if descriptor.gvk in seen:
            raise InputException(f"Duplicate watch for {descriptor.gvk}")
        seen.add(descriptor.gvk)
        _LOGGER.debug(
            "Loaded watch %s for chart %s", descriptor.gvk, descriptor.chart.chart_id
        )
        descriptors.append(descriptor)
    return descriptors
