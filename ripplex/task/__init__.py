"""Task tracking for work started by a store.

The store creates its drain loop and delayed dispatch timers through a
TaskService so tests and shutdown code can wait for them.
"""

from .service import TaskService, TaskServiceImpl

__all__ = ["TaskService", "TaskServiceImpl"]
