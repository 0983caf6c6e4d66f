from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


TaskType = Literal["project", "general"]
TaskPriority = Literal["low", "medium", "high"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    assigned_to: UUID
    project_id: UUID | None = None
    task_type: TaskType = "general"
    priority: TaskPriority = "medium"
    due_at: datetime | None = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    assigned_to: UUID
    project_id: UUID | None
    task_type: TaskType
    priority: TaskPriority
    status: TaskStatus
    due_at: datetime | None
    created_by: UUID
    created_at: datetime
    updated_at: datetime
