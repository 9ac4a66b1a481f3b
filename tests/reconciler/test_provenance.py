"""Tests for the provenance recorder."""

from collections.abc import Callable, Iterator
import itertools

import pytest

from helm_operator.annotation import (
    CHART_VERSION,
    LAST_ACTION,
    LAST_ACTION_OUTCOME,
    LAST_ACTION_TIME,
    RELEASE_REVISION,
    VALUES_FINGERPRINT,
)
from helm_operator.exceptions import HelmException, ObjectNotFoundError
from helm_operator.manifest import Resource
from helm_operator.reconciler import (
    Action,
    ConditionType,
    ProvenanceRecord,
    ProvenanceRecorder,
)
from helm_operator.release import Release, ReleaseStatus
from helm_operator.store import InMemoryStore

RELEASE = Release(
    name="example",
    namespace="default",
    chart_name="memcached",
    chart_version="0.1.0",
    revision=2,
    status=ReleaseStatus.DEPLOYED,
    manifest="kind: Deployment\napiVersion: apps/v1\nmetadata:\n  name: example\n",
)


@pytest.fixture
def clock() -> Callable[[], str]:
    """A clock returning a new timestamp on every call."""
    times: Iterator[int] = itertools.count(0)
    return lambda: f"2024-01-01T00:00:{next(times):02d}Z"


@pytest.fixture
def recorder(store: InMemoryStore, clock: Callable[[], str]) -> ProvenanceRecorder:
    return ProvenanceRecorder(store, clock=clock)


def test_record_annotations(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test a successful action is written to the annotations."""
    obj = store.add_object(make_resource())
    assert recorder.read(obj) is None

    updated = recorder.record(obj.key, Action.UPGRADE, fingerprint="sha256:f1", release=RELEASE)
    assert updated.annotations == {
        LAST_ACTION: "upgrade",
        LAST_ACTION_OUTCOME: "succeeded",
        LAST_ACTION_TIME: "2024-01-01T00:00:00Z",
        VALUES_FINGERPRINT: "sha256:f1",
        CHART_VERSION: "0.1.0",
        RELEASE_REVISION: "2",
    }
    assert recorder.read(updated) == ProvenanceRecord(
        action="upgrade",
        outcome="succeeded",
        timestamp="2024-01-01T00:00:00Z",
        fingerprint="sha256:f1",
        chart_version="0.1.0",
        revision=2,
    )


def test_record_keeps_previous_fields(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test fields that are not provided keep their previous values."""
    obj = store.add_object(make_resource())
    recorder.record(obj.key, Action.INSTALL, fingerprint="sha256:f1", release=RELEASE)
    updated = recorder.record(obj.key, Action.UNINSTALL)
    record = recorder.read(updated)
    assert record is not None
    assert record.action == "uninstall"
    assert record.fingerprint == "sha256:f1"
    assert record.revision == 2


def test_record_uses_latest_object(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test the record is applied to the latest version of the object."""
    obj = store.add_object(make_resource())
    changed = obj.copy()
    changed.spec = {"replicaCount": 5}
    store.update_object(changed)

    updated = recorder.record(obj.key, Action.INSTALL, fingerprint="sha256:f1")
    assert updated.spec == {"replicaCount": 5}


def test_record_with_mutation(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    obj = make_resource()
    obj.add_finalizer("example.com/cleanup")
    obj = store.add_object(obj)
    updated = recorder.record(
        obj.key,
        Action.UNINSTALL,
        mutate=lambda latest: latest.remove_finalizer("example.com/cleanup"),
    )
    assert updated.metadata.finalizers == []


def test_record_missing_object(
    recorder: ProvenanceRecorder, make_resource: Callable[..., Resource]
) -> None:
    with pytest.raises(ObjectNotFoundError):
        recorder.record(make_resource().key, Action.INSTALL)


def test_invalid_revision_annotation() -> None:
    record = ProvenanceRecord.from_annotations(
        {LAST_ACTION: "install", RELEASE_REVISION: "abc"}
    )
    assert record is not None
    assert record.revision is None


def test_record_success(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test the status after a successful install."""
    obj = store.add_object(make_resource())
    updated = recorder.record_success(obj.key, Action.INSTALL, RELEASE)

    deployed = updated.get_condition(ConditionType.DEPLOYED)
    assert deployed is not None
    assert deployed.status == "True"
    assert deployed.reason == "InstallSuccessful"
    failed = updated.get_condition(ConditionType.RELEASE_FAILED)
    assert failed is not None
    assert failed.status == "False"
    assert updated.status["deployedRelease"] == {
        "name": "example",
        "revision": 2,
        "manifest": RELEASE.manifest,
    }


def test_record_success_is_stable(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test repeating a success does not change the status."""
    obj = store.add_object(make_resource())
    first = recorder.record_success(obj.key, Action.INSTALL, RELEASE)
    second = recorder.record_success(obj.key, Action.RECONCILE, RELEASE)
    assert second.status == first.status
    assert second.metadata.resource_version == first.metadata.resource_version


def test_record_failure(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    """Test a failure is only written to the status."""
    obj = store.add_object(make_resource())
    recorder.record(obj.key, Action.INSTALL, fingerprint="sha256:f1", release=RELEASE)
    recorder.record_success(obj.key, Action.INSTALL, RELEASE)

    updated = recorder.record_failure(obj.key, Action.UPGRADE, HelmException("boom"))
    failed = updated.get_condition(ConditionType.RELEASE_FAILED)
    assert failed is not None
    assert failed.status == "True"
    assert failed.reason == "UpgradeError"
    assert failed.message == "boom"
    assert updated.annotations[LAST_ACTION] == "install"
    assert updated.annotations[VALUES_FINGERPRINT] == "sha256:f1"


def test_reconcile_failure_is_irreconcilable(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    obj = store.add_object(make_resource())
    updated = recorder.record_failure(obj.key, Action.RECONCILE, HelmException("drift"))
    condition = updated.get_condition(ConditionType.IRRECONCILABLE)
    assert condition is not None
    assert condition.status == "True"
    assert condition.reason == "ReconcileError"


def test_transition_time_changes_with_status(
    store: InMemoryStore,
    recorder: ProvenanceRecorder,
    make_resource: Callable[..., Resource],
) -> None:
    obj = store.add_object(make_resource())
    first = recorder.record_failure(obj.key, Action.INSTALL, HelmException("a"))
    second = recorder.record_failure(obj.key, Action.INSTALL, HelmException("b"))
    first_failed = first.get_condition(ConditionType.RELEASE_FAILED)
    second_failed = second.get_condition(ConditionType.RELEASE_FAILED)
    assert first_failed and second_failed
    assert second_failed.message == "b"
    assert second_failed.last_transition_time == first_failed.last_transition_time

    third = recorder.record_success(obj.key, Action.INSTALL, RELEASE)
    third_failed = third.get_condition(ConditionType.RELEASE_FAILED)
    assert third_failed is not None
    assert third_failed.status == "False"
    assert third_failed.last_transition_time != first_failed.last_transition_time
