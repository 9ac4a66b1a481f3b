"""Reconciliation engine for chart backed managed objects.

A `Reconciler` is constructed for each watched kind. The `ReleaseLockManager`
is shared by every reconciler of a process, so operations on one release are
serialized regardless of which kind triggered them.
"""

from .dependent import DependentWatchManager
from .lock import ReleaseKey, ReleaseLockManager, ReleaseToken
from .provenance import Action, ConditionType, ProvenanceRecord, ProvenanceRecorder
from .reconciler import Reconciler, ReleaseState, release_name
from .result import Result

__all__ = [
    "Action",
    "ConditionType",
    "DependentWatchManager",
    "ProvenanceRecord",
    "ProvenanceRecorder",
    "Reconciler",
    "ReleaseKey",
    "ReleaseLockManager",
    "ReleaseState",
    "ReleaseToken",
    "Result",
    "release_name",
]
