"""Manager wiring the controllers of an operator process together.

The manager owns the state shared by every controller: the release locks,
the metrics registry and the task service. It builds one reconciler and
controller for each watch descriptor.
"""

import asyncio
from collections.abc import Iterable
import logging

from .config import ControllerConfig
from .controller import Controller, WorkQueue
from .metrics import InfoGauge, ReconcileMetrics, Registry
from .reconciler import (
    DependentWatchManager,
    ProvenanceRecorder,
    Reconciler,
    ReleaseLockManager,
)
from .reconciler.lock import DEFAULT_MAX_CONCURRENT_ACTIONS
from .release import ActionClientGetter
from .store import Store, StoreWatchSource, WatchSource
from .task import TaskService, TaskServiceImpl
from .watches import WatchDescriptor

__all__ = ["Manager"]

_LOGGER = logging.getLogger(__name__)


class Manager:
    """Runs a controller for every watched kind."""

    def __init__(
        self,
        descriptors: Iterable[WatchDescriptor],
        store: Store,
        action_client_getter: ActionClientGetter,
        *,
        config: ControllerConfig | None = None,
        watch_source: WatchSource | None = None,
        registry: Registry | None = None,
        task_service: TaskService | None = None,
        max_concurrent_actions: int = DEFAULT_MAX_CONCURRENT_ACTIONS,
    ) -> None:
        """Initialize Manager.

        Args:
            descriptors: One entry for each kind of managed object
            store: Holds the managed and dependent objects
            action_client_getter: Provides the action client for an object
            config: Settings shared by the controllers
            watch_source: Used to watch dependent kinds, defaults to the store
            registry: Metrics registry, a new one is created when omitted
            task_service: Tracks worker tasks, a new one is created when omitted
            max_concurrent_actions: Limit on release operations in flight
        """
        self._store = store
        self._config = config or ControllerConfig()
        self._registry = registry or Registry()
        self._task_service = task_service or TaskServiceImpl()
        self._locks = ReleaseLockManager(max_concurrent_actions)
        self._watch_source = watch_source or StoreWatchSource(store)
        self._descriptors = list(descriptors)
        self._dependent_watches: list[DependentWatchManager] = []
        self._controllers: list[Controller] = []

        metrics = ReconcileMetrics(self._registry)
        # Each controller only feeds the info gauge of its own kind
        info_gauges: dict[str, InfoGauge] = {}
        for descriptor in self._descriptors:
            if (kind := descriptor.gvk.kind.lower()) not in info_gauges:
                info_gauges[kind] = InfoGauge(descriptor.gvk.kind)
                self._registry.register_observer(info_gauges[kind])
        provenance = ProvenanceRecorder(store)

        for descriptor in self._descriptors:
            queue = WorkQueue(
                self._task_service, self._config.base_backoff, self._config.max_backoff
            )
            dependent_watches = None
            if descriptor.watch_dependent_resources:
                dependent_watches = DependentWatchManager(
                    descriptor.gvk, self._watch_source, queue.add
                )
                self._dependent_watches.append(dependent_watches)
            reconciler = Reconciler(
                descriptor,
                store,
                action_client_getter,
                self._locks,
                dependent_watches=dependent_watches,
                provenance=provenance,
                metrics=metrics,
            )
            self._controllers.append(
                Controller(
                    reconciler,
                    store,
                    self._task_service,
                    config=self._config,
                    predicate=self._registry.predicate(
                        [info_gauges[descriptor.gvk.kind.lower()]]
                    ),
                    queue=queue,
                )
            )

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def locks(self) -> ReleaseLockManager:
        return self._locks

    @property
    def controllers(self) -> list[Controller]:
        return list(self._controllers)

    def start(self) -> None:
        """Start every controller."""
        _LOGGER.info("Starting manager with %d controllers", len(self._controllers))
        for controller in self._controllers:
            controller.start()

    async def close(self) -> None:
        """Stop every controller and the watches they started."""
        _LOGGER.info("Stopping manager")
        for controller in reversed(self._controllers):
            await controller.close()
        for dependent_watches in self._dependent_watches:
            dependent_watches.close()
        await self._task_service.cancel_all()

    async def block_till_idle(self) -> None:
        """Wait until no controller has a key queued or in progress.

        Keys waiting for a delayed requeue do not count as work.
        """
        while True:
            await asyncio.gather(*(c.queue.wait_idle() for c in self._controllers))
            await asyncio.sleep(0)
            if all(c.queue.idle for c in self._controllers):
                return
