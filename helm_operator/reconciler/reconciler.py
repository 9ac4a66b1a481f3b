"""Reconciler for the managed objects of a single watched kind.

Every call to `reconcile` recomputes the state of the release from scratch,
using only the managed object, its provenance annotations and the release
reported by the action client:

  - Deleting: the object is being deleted and cleanup is complete.
  - NeedsUninstallOnly: the object is being deleted and still holds the
    finalizer, so the release must be uninstalled before it can go away.
  - NeedsInstall: no release exists.
  - NeedsUpgrade: the values fingerprint or chart version recorded on the
    object differ from the desired ones.
  - UpToDate: the release matches, only drift in live resources is repaired.

Retries are never performed here. The outcome is returned as a `Result` and
the controller decides when the object is reconciled again.
"""

from enum import StrEnum
from functools import partial
import logging

from helm_operator.annotation import FINALIZER, action_options
from helm_operator.context import trace_context
from helm_operator.exceptions import (
    OperatorException,
    ReconcileException,
    ReleaseNotFoundError,
)
from helm_operator.manifest import ObjectKey, Resource
from helm_operator.metrics.reconcile import (
    RESULT_ERROR,
    RESULT_REQUEUE,
    RESULT_SUCCESS,
    ReconcileMetrics,
)
from helm_operator.release import (
    ActionClient,
    ActionClientGetter,
    InstallOptions,
    Release,
    UninstallOptions,
    UpgradeOptions,
)
from helm_operator.store import Store
from helm_operator.values import ResolvedValues, ValuesResolver
from helm_operator.watches import WatchDescriptor

from .dependent import DependentWatchManager
from .lock import ReleaseKey, ReleaseLockManager
from .provenance import Action, ProvenanceRecorder
from .result import Result

__all__ = [
    "ReleaseState",
    "Reconciler",
    "release_name",
]

_LOGGER = logging.getLogger(__name__)


class ReleaseState(StrEnum):
    """The state of a managed object's release, computed on every reconcile."""

    DELETING = "Deleting"
    NEEDS_INSTALL = "NeedsInstall"
    NEEDS_UPGRADE = "NeedsUpgrade"
    NEEDS_UNINSTALL_ONLY = "NeedsUninstallOnly"
    UP_TO_DATE = "UpToDate"


def release_name(obj: Resource) -> str:
    """The name of the release for a managed object."""
    return obj.name


class Reconciler:
    """Drives the release of each managed object towards its declared state."""

    def __init__(
        self,
        descriptor: WatchDescriptor,
        store: Store,
        action_client_getter: ActionClientGetter,
        locks: ReleaseLockManager,
        *,
        dependent_watches: DependentWatchManager | None = None,
        provenance: ProvenanceRecorder | None = None,
        metrics: ReconcileMetrics | None = None,
    ) -> None:
        """Initialize Reconciler.

        Args:
            descriptor: The watch entry this reconciler is responsible for
            store: Holds the managed objects
            action_client_getter: Provides the action client for an object
            locks: Process wide locks serializing operations on a release
            dependent_watches: Watches the kinds rendered by each release,
                or None when dependent watches are disabled
            provenance: Records actions on the managed objects
            metrics: Records reconcile outcomes
        """
        self._descriptor = descriptor
        self._store = store
        self._action_client_getter = action_client_getter
        self._locks = locks
        self._dependent_watches = dependent_watches
        self._provenance = provenance or ProvenanceRecorder(store)
        self._metrics = metrics
        self._values = ValuesResolver(descriptor.override_values)

    @property
    def descriptor(self) -> WatchDescriptor:
        return self._descriptor

    async def reconcile(self, key: ObjectKey) -> Result:
        """Reconcile the managed object with the given key.

        Errors are returned in the result rather than raised, with the
        exception of cancellation which always propagates.
        """
        kind = self._descriptor.gvk.kind
        observe = None
        if self._metrics is not None:
            observe = partial(self._metrics.observe_duration, kind)
        with trace_context(f"Reconcile {key}", observe=observe):
            try:
                result = await self._reconcile(key)
            except OperatorException as err:
                _LOGGER.warning("Failed to reconcile %s: %s", key, err)
                result = Result.error(err)
        if self._metrics is not None:
            if result.is_error:
                outcome = RESULT_ERROR
            elif result.requeue_after is not None:
                outcome = RESULT_REQUEUE
            else:
                outcome = RESULT_SUCCESS
            self._metrics.observe_result(kind, outcome)
        return result

    def _done(self) -> Result:
        if self._descriptor.reconcile_period > 0:
            return Result.requeue(self._descriptor.reconcile_period)
        return Result.success()

    async def _reconcile(self, key: ObjectKey) -> Result:
        if (obj := self._store.get_object(key)) is None:
            _LOGGER.debug("Object %s not found, nothing to reconcile", key)
            if self._dependent_watches is not None:
                self._dependent_watches.forget(key)
            return Result.success()

        client = self._action_client_getter.action_client_for(obj)
        release_key = ReleaseKey(obj.namespace or "", release_name(obj))

        if obj.is_deleting:
            return await self._reconcile_deletion(obj, client, release_key)

        if obj.add_finalizer(FINALIZER):
            _LOGGER.debug("Adding finalizer to %s", key)
            self._store.update_object(obj)
            self._provenance.record_initialized(key)

        async with self._locks.hold(release_key):
            # Provenance may have been written while waiting for the lock
            if (obj := self._store.get_object(key)) is None or obj.is_deleting:
                _LOGGER.debug("Object %s deleted while waiting for release lock", key)
                return Result.success()
            resolved = self._values.resolve(obj)
            release = await self._get_release(obj, client)
            state = self._release_state(obj, resolved, release)
            _LOGGER.info("Reconciling %s in state %s", key, state)
            if release is None:
                release = await self._install(obj, client, resolved)
                action = Action.INSTALL
            elif state == ReleaseState.NEEDS_UPGRADE:
                release = await self._upgrade(obj, client, resolved)
                action = Action.UPGRADE
            else:
                await self._repair(obj, client, release)
                action = Action.RECONCILE
            if action != Action.RECONCILE:
                self._provenance.record(
                    key, action, fingerprint=resolved.fingerprint, release=release
                )
            self._provenance.record_success(key, action, release)

        if self._dependent_watches is not None:
            self._dependent_watches.update(obj, release.manifest)
        return self._done()

    def _release_state(
        self, obj: Resource, resolved: ResolvedValues, release: Release | None
    ) -> ReleaseState:
        if release is None:
            return ReleaseState.NEEDS_INSTALL
        record = self._provenance.read(obj)
        if record is None or record.fingerprint != resolved.fingerprint:
            _LOGGER.debug("Values of %s changed to %s", obj.key, resolved.fingerprint)
            return ReleaseState.NEEDS_UPGRADE
        if release.chart_version != self._descriptor.chart.version:
            _LOGGER.debug(
                "Chart of %s changed from %s to %s",
                obj.key,
                release.chart_version,
                self._descriptor.chart.version,
            )
            return ReleaseState.NEEDS_UPGRADE
        return ReleaseState.UP_TO_DATE

    async def _get_release(self, obj: Resource, client: ActionClient) -> Release | None:
        try:
            return await client.get(release_name(obj))
        except ReleaseNotFoundError:
            return None
        except Exception as err:
            raise ReconcileException(str(obj.key), "get release", str(err)) from err

    async def _install(
        self, obj: Resource, client: ActionClient, resolved: ResolvedValues
    ) -> Release:
        options = InstallOptions(
            **action_options(obj.annotations, self._descriptor.install_annotations)
        )
        try:
            with trace_context("Install"):
                return await client.install(
                    release_name(obj),
                    obj.namespace or "",
                    self._descriptor.chart,
                    resolved.values,
                    options,
                )
        except Exception as err:
            self._record_failure(obj.key, Action.INSTALL, err)
            raise ReconcileException(str(obj.key), "install release", str(err)) from err

    async def _upgrade(
        self, obj: Resource, client: ActionClient, resolved: ResolvedValues
    ) -> Release:
        options = UpgradeOptions(
            **action_options(obj.annotations, self._descriptor.upgrade_annotations)
        )
        try:
            with trace_context("Upgrade"):
                return await client.upgrade(
                    release_name(obj),
                    obj.namespace or "",
                    self._descriptor.chart,
                    resolved.values,
                    options,
                )
        except Exception as err:
            self._record_failure(obj.key, Action.UPGRADE, err)
            raise ReconcileException(str(obj.key), "upgrade release", str(err)) from err

    async def _repair(self, obj: Resource, client: ActionClient, release: Release) -> None:
        try:
            with trace_context("Repair"):
                await client.reconcile(release)
        except Exception as err:
            self._record_failure(obj.key, Action.RECONCILE, err)
            raise ReconcileException(str(obj.key), "reconcile release", str(err)) from err

    async def _reconcile_deletion(
        self, obj: Resource, client: ActionClient, release_key: ReleaseKey
    ) -> Result:
        if not obj.has_finalizer(FINALIZER):
            _LOGGER.debug(
                "Object %s in state %s, waiting for removal", obj.key, ReleaseState.DELETING
            )
            if self._dependent_watches is not None:
                self._dependent_watches.forget(obj.key)
            return Result.success()

        _LOGGER.info("Reconciling %s in state %s", obj.key, ReleaseState.NEEDS_UNINSTALL_ONLY)
        options = UninstallOptions(
            **action_options(obj.annotations, self._descriptor.uninstall_annotations)
        )
        async with self._locks.hold(release_key):
            latest = self._store.get_object(obj.key)
            if latest is None or not latest.has_finalizer(FINALIZER):
                _LOGGER.debug("Release %s cleaned up while waiting for lock", release_key)
                return Result.success()
            try:
                with trace_context("Uninstall"):
                    await client.uninstall(release_name(obj), options)
            except ReleaseNotFoundError:
                _LOGGER.debug("Release %s already uninstalled", release_key)
            except Exception as err:
                self._record_failure(obj.key, Action.UNINSTALL, err)
                raise ReconcileException(
                    str(obj.key), "uninstall release", str(err)
                ) from err
            self._provenance.record(
                obj.key,
                Action.UNINSTALL,
                mutate=lambda latest: latest.remove_finalizer(FINALIZER),
            )
        if self._dependent_watches is not None:
            self._dependent_watches.forget(obj.key)
        return Result.success()

    def _record_failure(self, key: ObjectKey, action: Action, err: Exception) -> None:
        """Write the failure to the object status.

        Failing to write the status must not hide the error of the action.
        """
        try:
            self._provenance.record_failure(key, action, err)
        except OperatorException as status_err:
            _LOGGER.warning("Unable to record failure status of %s: %s", key, status_err)

