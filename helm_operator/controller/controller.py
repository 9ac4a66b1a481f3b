"""Controller feeding a reconciler from object events.

The controller watches the store for objects of the reconciler's kind and
queues their keys. A fixed pool of workers takes keys from the queue and
reconciles them, scheduling the next reconcile of each key from the result.
"""

import asyncio
from collections.abc import Callable
import logging

from helm_operator.config import ControllerConfig
from helm_operator.exceptions import ReconcileException
from helm_operator.manifest import ObjectKey, Resource
from helm_operator.metrics import (
    CreateEvent,
    DeleteEvent,
    Predicate,
    UpdateEvent,
)
from helm_operator.reconciler import Reconciler, Result
from helm_operator.store import Store, StoreEvent
from helm_operator.task import TaskService

from .queue import WorkQueue

__all__ = ["Controller"]

_LOGGER = logging.getLogger(__name__)


def _status_only(old: Resource, new: Resource) -> bool:
    """Return True if an update only changed the status of an object."""
    old_meta = old.metadata.to_dict()
    new_meta = new.metadata.to_dict()
    old_meta.pop("resourceVersion", None)
    new_meta.pop("resourceVersion", None)
    return old_meta == new_meta and old.spec == new.spec


class Controller:
    """Runs the reconciler for every object of its kind."""

    def __init__(
        self,
        reconciler: Reconciler,
        store: Store,
        task_service: TaskService,
        config: ControllerConfig | None = None,
        predicate: Predicate | None = None,
        queue: WorkQueue | None = None,
    ) -> None:
        """Initialize Controller.

        Args:
            reconciler: Reconciles a single object
            store: The source of the objects and their events
            task_service: Tracks the worker tasks
            config: Timeouts and retry settings
            predicate: Observes every object event before it is queued
            queue: The queue of keys to reconcile, shared with any other
                producer of keys such as dependent watches
        """
        self._reconciler = reconciler
        self._store = store
        self._task_service = task_service
        self._config = config or ControllerConfig()
        self._predicate = predicate or Predicate()
        self._queue = queue or WorkQueue(
            task_service, self._config.base_backoff, self._config.max_backoff
        )
        self._gvk = reconciler.descriptor.gvk
        self._removers: list[Callable[[], None]] = []
        self._workers: list[asyncio.Task[None]] = []

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def enqueue(self, key: ObjectKey) -> None:
        self._queue.add(key)

    def _added_listener(self, key: ObjectKey, obj: Resource) -> None:
        if key.gvk == self._gvk and self._predicate.create(CreateEvent(obj)):
            self.enqueue(key)

    def _updated_listener(self, key: ObjectKey, old: Resource, new: Resource) -> None:
        if key.gvk != self._gvk:
            return
        if self._predicate.update(UpdateEvent(old, new)) and not _status_only(old, new):
            self.enqueue(key)

    def _deleted_listener(self, key: ObjectKey, obj: Resource) -> None:
        if key.gvk == self._gvk and self._predicate.delete(DeleteEvent(obj)):
            self.enqueue(key)

    def start(self) -> None:
        """Start watching objects and reconciling them."""
        if self._workers:
            return
        _LOGGER.info(
            "Starting controller for %s with %d workers",
            self._gvk,
            self._reconciler.descriptor.max_concurrent_reconciles,
        )
        self._removers = [
            self._store.add_listener(StoreEvent.OBJECT_ADDED, self._added_listener),
            self._store.add_listener(StoreEvent.OBJECT_UPDATED, self._updated_listener),
            self._store.add_listener(StoreEvent.OBJECT_DELETED, self._deleted_listener),
        ]
        for obj in self._store.list_objects(self._gvk):
            self._added_listener(obj.key, obj)
        for i in range(self._reconciler.descriptor.max_concurrent_reconciles):
            self._workers.append(
                self._task_service.create_background_task(
                    self._worker(), name=f"{self._gvk.kind}-worker-{i}"
                )
            )

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            try:
                await self.process(key)
            finally:
                self._queue.done(key)

    async def process(self, key: ObjectKey) -> Result:
        """Reconcile a key and schedule its next reconcile."""
        timeout = self._config.reconcile_timeout
        try:
            async with asyncio.timeout(timeout):
                result = await self._reconciler.reconcile(key)
        except TimeoutError:
            _LOGGER.warning("Reconcile of %s timed out after %ss", key, timeout)
            result = Result.error(
                ReconcileException(str(key), "finish", f"Timed out after {timeout}s")
            )
        except Exception as err:
            _LOGGER.exception("Unexpected error reconciling %s", key)
            result = Result.error(err)

        if result.is_error:
            self._queue.add_rate_limited(key)
            return result
        self._queue.forget(key)
        if result.requeue_after is not None:
            self._queue.add_after(key, result.requeue_after)
        return result

    async def close(self) -> None:
        """Stop the workers and the watches."""
        _LOGGER.debug("Stopping controller for %s", self._gvk)
        for remove in self._removers:
            remove()
        self._removers.clear()
        self._queue.shutdown()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
