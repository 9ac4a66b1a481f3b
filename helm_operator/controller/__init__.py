"""Controllers scheduling reconciles of managed objects."""

from .controller import Controller
from .queue import WorkQueue

__all__ = [
    "Controller",
    "WorkQueue",
]
