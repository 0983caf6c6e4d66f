from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


EdgeContext = Literal["project", "global", "superadmin", "custom"]


class ReportingEdgeInput(BaseModel):
    supervisor_id: UUID
    context: EdgeContext
    project_id: UUID | None = None
    label: str | None = None


class ReportingEdgesUpsert(BaseModel):
    edges: list[ReportingEdgeInput] = Field(default_factory=list)


class ReportingEdgeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subordinate_id: UUID
    supervisor_id: UUID
    context: EdgeContext
    project_id: UUID | None
    label: str | None
    path: str
    position: int


class HierarchyRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    principal_id: UUID
    level: int
    edges: list[ReportingEdgeRead]
    created_at: datetime
    updated_at: datetime


class ScopeGrantRead(BaseModel):
    owner_id: UUID
    project_id: UUID | None


class ScopeRead(BaseModel):
    principal_id: UUID
    unrestricted: bool
    grants: list[ScopeGrantRead]
