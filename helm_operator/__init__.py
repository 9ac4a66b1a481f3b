"""
.. include:: ../README.md
"""

__all__ = [
    "annotation",
    "chart",
    "config",
    "controller",
    "exceptions",
    "manager",
    "manifest",
    "metrics",
    "reconciler",
    "release",
    "store",
    "values",
    "watches",
]
