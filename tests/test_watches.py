"""Tests for loading the watches file."""

from pathlib import Path

import pytest

from helm_operator.annotation import DEFAULT_UPGRADE_ANNOTATIONS
from helm_operator.exceptions import InputException
from helm_operator.manifest import GroupVersionKind
from helm_operator.watches import (
    WatchDefaults,
    load_watches,
    parse_duration,
    parse_watches,
)

CHART_YAML = """\
apiVersion: v2
name: {name}
version: {version}
"""

WATCHES = """\
- group: cache.example.com
  version: v1alpha1
  kind: Memcached
  chart: helm-charts/memcached
  reconcilePeriod: 1m
  maxConcurrentReconciles: 4
  overrideValues:
    image:
      repository: $MEMCACHED_IMAGE
- group: web.example.com
  version: v1
  kind: Nginx
  chart: helm-charts/nginx
  watchDependentResources: false
"""


def write_chart(path: Path, name: str = "memcached", version: str = "0.1.0") -> Path:
    path.mkdir(parents=True)
    (path / "Chart.yaml").write_text(CHART_YAML.format(name=name, version=version))
    return path


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1m", 60.0),
        ("1h30m", 5400.0),
        ("45s", 45.0),
        ("500ms", 0.5),
        ("1m0.5s", 60.5),
        ("0", 0.0),
        (90, 90.0),
    ],
)
def test_parse_duration(value: str | int, expected: float) -> None:
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["1d", "abc", "10", "5m junk", "-1s"])
def test_parse_duration_invalid(value: str) -> None:
    with pytest.raises(InputException, match="Invalid duration"):
        parse_duration(value)


async def test_load_watches(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test entries are resolved into descriptors with their charts."""
    monkeypatch.setenv("MEMCACHED_IMAGE", "memcached:1.6")
    write_chart(tmp_path / "helm-charts" / "memcached")
    write_chart(tmp_path / "helm-charts" / "nginx", name="nginx", version="1.2.3")
    watches_file = tmp_path / "watches.yaml"
    watches_file.write_text(WATCHES)

    memcached, nginx = await load_watches(
        watches_file,
        WatchDefaults(reconcile_period=30.0, max_concurrent_reconciles=2),
    )

    assert memcached.gvk == GroupVersionKind("cache.example.com", "v1alpha1", "Memcached")
    assert memcached.chart.name == "memcached"
    assert memcached.chart.path == tmp_path / "helm-charts" / "memcached"
    assert memcached.reconcile_period == 60.0
    assert memcached.max_concurrent_reconciles == 4
    assert memcached.watch_dependent_resources
    assert memcached.override_values == {"image": {"repository": "memcached:1.6"}}
    assert memcached.upgrade_annotations == DEFAULT_UPGRADE_ANNOTATIONS

    assert nginx.gvk == GroupVersionKind("web.example.com", "v1", "Nginx")
    assert nginx.chart.chart_id == "nginx-1.2.3"
    assert nginx.reconcile_period == 30.0
    assert nginx.max_concurrent_reconciles == 2
    assert not nginx.watch_dependent_resources
    assert nginx.override_values == {}


async def test_absolute_chart_path(tmp_path: Path) -> None:
    chart_dir = write_chart(tmp_path / "charts" / "memcached")
    watches_file = tmp_path / "config" / "watches.yaml"
    watches_file.parent.mkdir()
    watches_file.write_text(
        f"- version: v1\n  kind: Memcached\n  chart: {chart_dir}\n"
    )
    (descriptor,) = await load_watches(watches_file)
    assert descriptor.chart.path == chart_dir
    assert descriptor.gvk.group == ""
    assert descriptor.reconcile_period == 0.0
    assert descriptor.max_concurrent_reconciles == 1


async def test_duplicate_watch(tmp_path: Path) -> None:
    write_chart(tmp_path / "memcached")
    watches_file = tmp_path / "watches.yaml"
    entry = "- version: v1\n  kind: Memcached\n  chart: memcached\n"
    watches_file.write_text(entry + entry)
    with pytest.raises(InputException, match="Duplicate watch"):
        await load_watches(watches_file)


async def test_missing_chart(tmp_path: Path) -> None:
    watches_file = tmp_path / "watches.yaml"
    watches_file.write_text("- version: v1\n  kind: Memcached\n  chart: missing\n")
    with pytest.raises(InputException, match="missing Chart.yaml"):
        await load_watches(watches_file)


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("- version: v1\n  kind: Memcached\n  chart: memcached\n  maxConcurrentReconciles: 0\n", "must be positive"),
        ("- version: v1\n  kind: Memcached\n  chart: memcached\n  reconcilePeriod: 2d\n", "Invalid duration"),
        ("- version: v1\n  kind: Memcached\n  chart: memcached\n  reconcilePeriod: -5\n", "Invalid duration"),
    ],
)
async def test_invalid_settings(tmp_path: Path, content: str, match: str) -> None:
    write_chart(tmp_path / "memcached")
    watches_file = tmp_path / "watches.yaml"
    watches_file.write_text(content)
    with pytest.raises(InputException, match=match):
        await load_watches(watches_file)


def test_parse_numeric_period() -> None:
    (entry,) = parse_watches(
        "- version: v1\n  kind: Memcached\n  chart: memcached\n  reconcilePeriod: 30\n"
    )
    assert entry.reconcile_period == "30s"


def test_parse_empty() -> None:
    assert parse_watches("") == []


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("kind: Memcached\n", "expected a list"),
        ("- just a string\n", "Invalid watches entry"),
        ("- version: v1\n  chart: memcached\n", "missing kind"),
        ("- version: v1\n  kind: Memcached\n", "missing chart"),
        ("- [unclosed\n", "Unable to parse watches file"),
    ],
)
def test_parse_invalid(content: str, match: str) -> None:
    with pytest.raises(InputException, match=match):
        parse_watches(content)
