"""Release operations package.

This package defines the action client interface used by the reconciler to
install, upgrade, uninstall and repair releases, along with a helm backed
implementation and a recording fake for tests.
"""

from .client import (
    ActionClient,
    ActionClientGetter,
    GetOptions,
    InstallOptions,
    Release,
    ReleaseStatus,
    UninstallOptions,
    UninstallResult,
    UpgradeOptions,
)
from .helm import HelmActionClient, HelmActionClientGetter

__all__ = [
    "ActionClient",
    "ActionClientGetter",
    "GetOptions",
    "InstallOptions",
    "Release",
    "ReleaseStatus",
    "UninstallOptions",
    "UninstallResult",
    "UpgradeOptions",
    "HelmActionClient",
    "HelmActionClientGetter",
]
