from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReminderCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    remind_at: datetime
    related_type: Literal["lead", "task"]
    related_id: UUID


class ReminderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    remind_at: datetime
    related_type: str
    related_id: UUID
    owner_id: UUID
    project_id: UUID | None
    status: str
    created_by: UUID | None
    sent_at: datetime | None


class FollowUpBuckets(BaseModel):
    pending: list[ReminderRead] = Field(default_factory=list)
    today: list[ReminderRead] = Field(default_factory=list)
    tomorrow: list[ReminderRead] = Field(default_factory=list)
    upcoming: list[ReminderRead] = Field(default_factory=list)
