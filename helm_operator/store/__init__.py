"""
The store module is the boundary between the operator and the cluster API.

- Uses ObjectKey as the key for all objects.
- Stores values as `Resource` dataclass instances from manifest.py.
- Provides get, update and status APIs for the reconciler and change
  listeners for the controllers.

This abstract interface allows for various implementations (in-memory, api
server backed, etc.).
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore
from .watch import StoreWatchSource, WatchSource

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
    "StoreWatchSource",
    "WatchSource",
]
