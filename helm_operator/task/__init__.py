"""Task tracking module for helm-operator.

This module provides a simple task tracking service that allows the
controllers to track their workers and delayed requeues, and allows tests
to wait for all in flight work to finish.
"""

from .service import TaskService, TaskServiceImpl

__all__ = ["TaskService", "TaskServiceImpl"]
