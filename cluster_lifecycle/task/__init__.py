"""Task tracking module.

Provides the task service used to fan out per-node work and to schedule
fire-and-forget notifications.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
