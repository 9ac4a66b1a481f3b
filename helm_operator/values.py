"""Module for resolving the chart values used for a release.

Values come from two layers. The values embedded in the managed object's
spec form the base, and the static override values from the watch entry are
merged on top of them. Chart defaults are applied later by helm itself when
rendering, so they are not a layer here.
"""

from collections.abc import Mapping
import copy
from dataclasses import dataclass
import hashlib
import json
import logging
import os
from typing import Any

from .exceptions import InputException
from .manifest import Resource

__all__ = [
    "deep_merge",
    "fingerprint",
    "expand_env",
    "ResolvedValues",
    "ValuesResolver",
]

_LOGGER = logging.getLogger(__name__)

FINGERPRINT_PREFIX = "sha256:"


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, similar to how Helm merges values.

    Keys are unioned. When both sides hold a dictionary for the same key they
    are merged recursively, otherwise the override value replaces the base
    value entirely (lists included). Neither input is modified.
    """
    result = dict(base)
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, Mapping) and isinstance(override_value, Mapping):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def fingerprint(values: Mapping[str, Any]) -> str:
    """Return a deterministic content hash of a values tree.

    Keys are sorted at every level so the result does not depend on the
    insertion order of the dictionaries.
    """
    try:
        content = json.dumps(values, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as err:
        raise InputException(f"Values are not serializable: {err}") from err
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"{FINGERPRINT_PREFIX}{digest}"


def expand_env(values: Any) -> Any:
    """Expand environment variables in every string leaf of a values tree."""
    if isinstance(values, str):
        return os.path.expandvars(values)
    if isinstance(values, Mapping):
        return {key: expand_env(value) for key, value in values.items()}
    if isinstance(values, list):
        return [expand_env(value) for value in values]
    return values


@dataclass(frozen=True)
class ResolvedValues:
    """The merged values for a release along with their fingerprint."""

    values: dict[str, Any]
    fingerprint: str


class ValuesResolver:
    """Merges the layered configuration into the final values for a release."""

    def __init__(self, override_values: Mapping[str, Any] | None = None) -> None:
        """Initialize ValuesResolver with the highest precedence values."""
        self._override_values = copy.deepcopy(dict(override_values or {}))

    def resolve(self, obj: Resource) -> ResolvedValues:
        """Return the values to use for the release of the managed object."""
        spec_values = obj.values
        if not isinstance(spec_values, dict):
            raise InputException(f"Invalid spec for {obj.key}: expected a mapping")
        values = copy.deepcopy(deep_merge(spec_values, self._override_values))
        resolved = ResolvedValues(values=values, fingerprint=fingerprint(values))
        _LOGGER.debug("Resolved values for %s (%s)", obj.key, resolved.fingerprint)
        return resolved
