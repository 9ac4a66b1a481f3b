"""Mutual exclusion for operations on a release.

Operations on the same release are strictly serialized while operations on
different releases run in parallel, subject only to a global limit on the
number of release operations in flight.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from typing import DefaultDict

__all__ = [
    "ReleaseKey",
    "ReleaseToken",
    "ReleaseLockManager",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_ACTIONS = 16


@dataclass(frozen=True, order=True)
class ReleaseKey:
    """Identifier for a release."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReleaseToken:
    """Proof of holding the lock for a release, returned to release it."""

    key: ReleaseKey
    lock: asyncio.Lock = field(repr=False)
    released: bool = False


class ReleaseLockManager:
    """Hands out per release locks and bounds the total number held.

    A lock is created the first time a release key is used and is kept for
    the lifetime of the process. The number of locks is bounded by the
    number of distinct releases reconciled.
    """

    def __init__(
        self, max_concurrent_actions: int = DEFAULT_MAX_CONCURRENT_ACTIONS
    ) -> None:
        """Initialize ReleaseLockManager."""
        if max_concurrent_actions < 1:
            raise ValueError("max_concurrent_actions must be positive")
        self._locks: DefaultDict[ReleaseKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._limit = asyncio.Semaphore(max_concurrent_actions)

    async def acquire(self, key: ReleaseKey) -> ReleaseToken:
        """Block until the release is available, then hold it.

        The release lock is taken before a global slot so that waiting on a
        busy release does not hold capacity from unrelated releases.
        """
        lock = self._locks[key]
        if lock.locked():
            _LOGGER.debug("Waiting for release lock %s", key)
        await lock.acquire()
        try:
            await self._limit.acquire()
        except BaseException:
            lock.release()
            raise
        return ReleaseToken(key=key, lock=lock)

    def release(self, token: ReleaseToken) -> None:
        """Release a lock previously returned by `acquire`."""
        if token.released:
            raise RuntimeError(f"Release lock {token.key} already released")
        token.released = True
        self._limit.release()
        token.lock.release()

    @asynccontextmanager
    async def hold(self, key: ReleaseKey) -> AsyncGenerator[ReleaseToken, None]:
        """Context manager holding the release lock for the enclosed block."""
        token = await self.acquire(key)
        try:
            yield token
        finally:
            self.release(token)

    def locked(self, key: ReleaseKey) -> bool:
        """Return True if the release is currently held."""
        return key in self._locks and self._locks[key].locked()

    def __len__(self) -> int:
        """Number of releases a lock has been created for."""
        return len(self._locks)
