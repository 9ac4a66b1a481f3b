"""Annotation keys read and written on managed objects.

There are two groups of annotations:
  - Action annotations are set by users to alter how a release is
    installed, upgraded or uninstalled (e.g. disabling hooks).
  - Provenance annotations are written by the operator after every
    successful install or upgrade and are read back to decide whether a
    release needs an upgrade. External tooling may read them but must not
    write them.
"""

from collections.abc import Iterable, Mapping
import logging

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

DOMAIN = "helm.sdk.operatorframework.io"

FINALIZER = f"{DOMAIN}/uninstall-release"

INSTALL_DISABLE_HOOKS = f"{DOMAIN}/install-disable-hooks"
UPGRADE_DISABLE_HOOKS = f"{DOMAIN}/upgrade-disable-hooks"
UPGRADE_FORCE = f"{DOMAIN}/upgrade-force"
UNINSTALL_DISABLE_HOOKS = f"{DOMAIN}/uninstall-disable-hooks"

DEFAULT_INSTALL_ANNOTATIONS: tuple[str, ...] = (INSTALL_DISABLE_HOOKS,)
DEFAULT_UPGRADE_ANNOTATIONS: tuple[str, ...] = (UPGRADE_DISABLE_HOOKS, UPGRADE_FORCE)
DEFAULT_UNINSTALL_ANNOTATIONS: tuple[str, ...] = (UNINSTALL_DISABLE_HOOKS,)

# Option field set by each action annotation
_OPTION_FIELDS: dict[str, str] = {
    INSTALL_DISABLE_HOOKS: "disable_hooks",
    UPGRADE_DISABLE_HOOKS: "disable_hooks",
    UPGRADE_FORCE: "force",
    UNINSTALL_DISABLE_HOOKS: "disable_hooks",
}

LAST_ACTION = f"{DOMAIN}/last-action"
LAST_ACTION_OUTCOME = f"{DOMAIN}/last-action-outcome"
LAST_ACTION_TIME = f"{DOMAIN}/last-action-time"
VALUES_FINGERPRINT = f"{DOMAIN}/values-fingerprint"
CHART_VERSION = f"{DOMAIN}/chart-version"
RELEASE_REVISION = f"{DOMAIN}/release-revision"

PROVENANCE_ANNOTATIONS: tuple[str, ...] = (
    LAST_ACTION,
    LAST_ACTION_OUTCOME,
    LAST_ACTION_TIME,
    VALUES_FINGERPRINT,
    CHART_VERSION,
    RELEASE_REVISION,
)

# Back-reference from a dependent object to its managed object, used when an
# owner reference can't be set (cluster scoped or cross namespace objects).
PRIMARY_RESOURCE = "operator-sdk/primary-resource"
PRIMARY_RESOURCE_TYPE = "operator-sdk/primary-resource-type"


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise InputException(f"Annotation {key} must be 'true' or 'false', got '{value}'")


def action_options(annotations: Mapping[str, str], keys: Iterable[str]) -> dict[str, bool]:
    """Return option overrides for the action annotations present on an object.

    The result is suitable for passing as keyword arguments to the options
    dataclass of the action.
    """
    options: dict[str, bool] = {}
    for key in keys:
        if (value := annotations.get(key)) is None:
            continue
        if (option := _OPTION_FIELDS.get(key)) is None:
            raise InputException(f"Unsupported action annotation {key}")
        options[option] = _parse_bool(key, value)
        _LOGGER.debug("Annotation %s sets %s=%s", key, option, options[option])
    return options
