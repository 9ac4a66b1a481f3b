"""Records what the operator did to a managed object.

Provenance lives in two places. Annotations on the object record the last
successful action along with the values fingerprint and chart version used,
and are read back to decide whether a release needs an upgrade. The status
subresource holds conditions describing the current state of the release,
including failures, which are never written to the annotations.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Any

from helm_operator.annotation import (
    CHART_VERSION,
    LAST_ACTION,
    LAST_ACTION_OUTCOME,
    LAST_ACTION_TIME,
    RELEASE_REVISION,
    VALUES_FINGERPRINT,
)
from helm_operator.exceptions import ObjectNotFoundError
from helm_operator.manifest import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    Condition,
    ObjectKey,
    Resource,
    now_timestamp,
)
from helm_operator.release import Release
from helm_operator.store import Store

__all__ = [
    "Action",
    "ConditionType",
    "ProvenanceRecord",
    "ProvenanceRecorder",
]

_LOGGER = logging.getLogger(__name__)

OUTCOME_SUCCEEDED = "succeeded"
DEPLOYED_RELEASE = "deployedRelease"


class Action(StrEnum):
    """An operation performed on a release."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    UNINSTALL = "uninstall"
    RECONCILE = "reconcile"


class ConditionType(StrEnum):
    INITIALIZED = "Initialized"
    DEPLOYED = "Deployed"
    RELEASE_FAILED = "ReleaseFailed"
    IRRECONCILABLE = "Irreconcilable"


_SUCCESS_REASONS = {
    Action.INSTALL: "InstallSuccessful",
    Action.UPGRADE: "UpgradeSuccessful",
    Action.RECONCILE: "ReconcileSuccessful",
    Action.UNINSTALL: "UninstallSuccessful",
}


@dataclass(frozen=True)
class ProvenanceRecord:
    """The provenance annotations of a managed object."""

    action: str
    outcome: str
    timestamp: str
    fingerprint: str | None = None
    chart_version: str | None = None
    revision: int | None = None

    @classmethod
    def from_annotations(cls, annotations: dict[str, str]) -> "ProvenanceRecord | None":
        """Read the record from annotations, None if never recorded."""
        if (action := annotations.get(LAST_ACTION)) is None:
            return None
        revision: int | None = None
        if (value := annotations.get(RELEASE_REVISION)) is not None:
            try:
                revision = int(value)
            except ValueError:
                _LOGGER.warning("Ignoring invalid release revision annotation %r", value)
        return cls(
            action=action,
            outcome=annotations.get(LAST_ACTION_OUTCOME, ""),
            timestamp=annotations.get(LAST_ACTION_TIME, ""),
            fingerprint=annotations.get(VALUES_FINGERPRINT),
            chart_version=annotations.get(CHART_VERSION),
            revision=revision,
        )

    def to_annotations(self) -> dict[str, str]:
        annotations = {
            LAST_ACTION: self.action,
            LAST_ACTION_OUTCOME: self.outcome,
            LAST_ACTION_TIME: self.timestamp,
        }
        if self.fingerprint is not None:
            annotations[VALUES_FINGERPRINT] = self.fingerprint
        if self.chart_version is not None:
            annotations[CHART_VERSION] = self.chart_version
        if self.revision is not None:
            annotations[RELEASE_REVISION] = str(self.revision)
        return annotations


def set_condition(
    conditions: list[dict[str, Any]], condition: Condition
) -> list[dict[str, Any]]:
    """Return the conditions with one condition added or replaced.

    The transition time of an existing condition is kept unless its status
    changes.
    """
    result: list[dict[str, Any]] = []
    found = False
    for raw in conditions:
        if raw.get("type") != condition.type:
            result.append(raw)
            continue
        found = True
        existing = Condition.from_dict(raw)
        if existing.status == condition.status:
            condition.last_transition_time = existing.last_transition_time
        result.append(condition.to_dict())
    if not found:
        result.append(condition.to_dict())
    return result


class ProvenanceRecorder:
    """Writes provenance annotations and status conditions to managed objects."""

    def __init__(
        self, store: Store, clock: Callable[[], str] = now_timestamp
    ) -> None:
        """Initialize ProvenanceRecorder.

        Args:
            store: Holds the managed objects
            clock: Returns the current time as a kubernetes timestamp
        """
        self._store = store
        self._clock = clock

    def read(self, obj: Resource) -> ProvenanceRecord | None:
        return ProvenanceRecord.from_annotations(obj.annotations)

    def record(
        self,
        key: ObjectKey,
        action: Action,
        *,
        fingerprint: str | None = None,
        release: Release | None = None,
        mutate: Callable[[Resource], Any] | None = None,
    ) -> Resource:
        """Annotate the latest version of the object with a successful action.

        Fields that are not provided keep their previous value. The optional
        `mutate` callback may make further changes to the object, which are
        written in the same update.
        """
        if (obj := self._store.get_object(key)) is None:
            raise ObjectNotFoundError(f"Object {key} not found")
        previous = self.read(obj)
        record = ProvenanceRecord(
            action=str(action),
            outcome=OUTCOME_SUCCEEDED,
            timestamp=self._clock(),
            fingerprint=fingerprint or (previous.fingerprint if previous else None),
            chart_version=(
                release.chart_version
                if release
                else (previous.chart_version if previous else None)
            ),
            revision=(
                release.revision if release else (previous.revision if previous else None)
            ),
        )
        obj.metadata.annotations.update(record.to_annotations())
        if mutate is not None:
            mutate(obj)
        _LOGGER.debug("Recording %s of %s", action, key)
        return self._store.update_object(obj)

    def _update_conditions(
        self,
        key: ObjectKey,
        conditions: list[Condition],
        extra: dict[str, Any] | None = None,
    ) -> Resource:
        if (obj := self._store.get_object(key)) is None:
            raise ObjectNotFoundError(f"Object {key} not found")
        status = dict(obj.status or {})
        merged = list(status.get("conditions", []))
        for condition in conditions:
            merged = set_condition(merged, condition)
        status["conditions"] = merged
        if extra:
            status.update(extra)
        return self._store.update_status(key, status)

    def _condition(
        self,
        condition_type: ConditionType,
        status: str,
        reason: str | None = None,
        message: str | None = None,
    ) -> Condition:
        return Condition(
            type=str(condition_type),
            status=status,
            reason=reason,
            message=message,
            last_transition_time=self._clock(),
        )

    def record_initialized(self, key: ObjectKey) -> Resource:
        return self._update_conditions(
            key, [self._condition(ConditionType.INITIALIZED, CONDITION_TRUE)]
        )

    def record_success(self, key: ObjectKey, action: Action, release: Release) -> Resource:
        """Mark the release as deployed and clear any failure conditions.

        A reconcile of an up to date release keeps the reason of an existing
        Deployed condition so a steady state doesn't change the status.
        """
        conditions = [
            self._condition(ConditionType.INITIALIZED, CONDITION_TRUE),
            self._condition(ConditionType.RELEASE_FAILED, CONDITION_FALSE),
            self._condition(ConditionType.IRRECONCILABLE, CONDITION_FALSE),
        ]
        obj = self._store.get_object(key)
        deployed = obj.get_condition(ConditionType.DEPLOYED) if obj else None
        if (
            action != Action.RECONCILE
            or deployed is None
            or deployed.status != CONDITION_TRUE
        ):
            conditions.append(
                self._condition(
                    ConditionType.DEPLOYED,
                    CONDITION_TRUE,
                    reason=_SUCCESS_REASONS[action],
                    message=f"Release {release.name} revision {release.revision} deployed",
                )
            )
        return self._update_conditions(
            key,
            conditions,
            extra={
                DEPLOYED_RELEASE: {
                    "name": release.name,
                    "revision": release.revision,
                    "manifest": release.manifest,
                }
            },
        )

    def record_failure(self, key: ObjectKey, action: Action, err: Exception) -> Resource:
        """Record a failed action in the status conditions.

        A failure to repair drift marks the object Irreconcilable, any other
        failure marks the release as failed.
        """
        reason = f"{action.capitalize()}Error"
        condition_type = (
            ConditionType.IRRECONCILABLE
            if action == Action.RECONCILE
            else ConditionType.RELEASE_FAILED
        )
        return self._update_conditions(
            key,
            [
                self._condition(ConditionType.INITIALIZED, CONDITION_TRUE),
                self._condition(
                    condition_type, CONDITION_TRUE, reason=reason, message=str(err)
                ),
            ],
        )
