"""Reference to a local helm chart used by a watch entry.

Only the chart metadata is read here. Loading templates and rendering the
chart is done by helm.
"""

from dataclasses import dataclass
import logging
from pathlib import Path

import aiofiles
from aiofiles.ospath import exists
import yaml

from .exceptions import InputException

__all__ = [
    "Chart",
    "load_chart",
]

_LOGGER = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"


@dataclass(frozen=True, kw_only=True)
class Chart:
    """A chart on the local filesystem."""

    name: str
    """The name of the chart from its metadata."""

    version: str
    """The version of the chart from its metadata."""

    path: Path
    """The directory containing the chart."""

    @property
    def chart_id(self) -> str:
        """Identifier for the chart and version."""
        return f"{self.name}-{self.version}"


async def load_chart(path: Path) -> Chart:
    """Read the metadata of the chart in the specified directory."""
    chart_file = path / CHART_FILE
    if not await exists(chart_file):
        raise InputException(f"Chart directory {path} is missing {CHART_FILE}")
    async with aiofiles.open(chart_file) as f:
        content = await f.read()
    try:
        doc = yaml.load(content, Loader=yaml.SafeLoader)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {chart_file}: {err}") from err
    if not isinstance(doc, dict):
        raise InputException(f"Invalid {chart_file}: expected a mapping")
    if not (name := doc.get("name")):
        raise InputException(f"Invalid {chart_file} missing name")
    if not (version := doc.get("version")):
        raise InputException(f"Invalid {chart_file} missing version")
    _LOGGER.debug("Loaded chart %s version %s from %s", name, version, path)
    return Chart(name=name, version=str(version), path=path)
