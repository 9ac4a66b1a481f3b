"""Work queue of object keys waiting to be reconciled."""

import asyncio
import logging

from helm_operator.config import DEFAULT_BASE_BACKOFF, DEFAULT_MAX_BACKOFF
from helm_operator.manifest import ObjectKey
from helm_operator.task import TaskService

__all__ = ["WorkQueue"]

_LOGGER = logging.getLogger(__name__)


class WorkQueue:
    """A FIFO queue of keys that coalesces duplicates.

    A key is held in the queue at most once. A key added while it is being
    processed is queued again once processing is done, so a key is never
    processed by two workers at the same time.
    """

    def __init__(
        self,
        task_service: TaskService,
        base_backoff: float = DEFAULT_BASE_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ) -> None:
        """Initialize WorkQueue."""
        self._task_service = task_service
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._queue: asyncio.Queue[ObjectKey] = asyncio.Queue()
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._failures: dict[ObjectKey, int] = {}
        self._waiting: dict[ObjectKey, tuple[float, asyncio.Task[None]]] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutdown = False

    def _update_idle(self) -> None:
        if self._dirty or self._processing:
            self._idle.clear()
        else:
            self._idle.set()

    def add(self, key: ObjectKey) -> None:
        """Queue the key unless it is already queued."""
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        self._update_idle()
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    async def get(self) -> ObjectKey:
        """Wait for the next key and mark it as being processed."""
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: ObjectKey) -> None:
        """Mark processing of the key as finished."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutdown:
            self._queue.put_nowait(key)
        self._update_idle()

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Queue the key once the delay in seconds has passed.

        When the key is already waiting the earlier of the two times is kept.
        """
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        ready = asyncio.get_running_loop().time() + delay
        if (waiting := self._waiting.get(key)) is not None:
            if waiting[0] <= ready:
                return
            waiting[1].cancel()

        async def wait_and_add() -> None:
            await asyncio.sleep(delay)
            self._waiting.pop(key, None)
            self.add(key)

        task = self._task_service.create_background_task(
            wait_and_add(), name=f"requeue-{key}"
        )
        self._waiting[key] = (ready, task)

    def backoff(self, key: ObjectKey) -> float:
        """The delay before the next retry of a failing key."""
        failures = self._failures.get(key, 0)
        return min(self._base_backoff * 2**failures, self._max_backoff)

    def add_rate_limited(self, key: ObjectKey) -> None:
        """Queue a failed key after a delay that grows with each failure."""
        delay = self.backoff(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        _LOGGER.debug("Retrying %s in %0.3fs", key, delay)
        self.add_after(key, delay)

    def forget(self, key: ObjectKey) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: ObjectKey) -> int:
        return self._failures.get(key, 0)

    def __len__(self) -> int:
        """Number of keys waiting to be processed."""
        return self._queue.qsize()

    @property
    def idle(self) -> bool:
        """True when no key is queued or being processed."""
        return self._idle.is_set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def shutdown(self) -> None:
        """Stop accepting keys and cancel delayed additions."""
        self._shutdown = True
        for _, task in self._waiting.values():
            task.cancel()
        self._waiting.clear()
