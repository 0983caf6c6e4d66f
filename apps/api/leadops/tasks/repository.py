from __future__ import annotations

from leadops.platform.security.repository import BaseRepository
from leadops.tasks.models import Task


class TaskRepository(BaseRepository):
    resource = "task"
    model = Task
    owner_attr = "assigned_to"


task_repository = TaskRepository()
