from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LeadCreate(BaseModel):
    owner_id: UUID | None = None
    project_id: UUID | None = None
    source: str | None = None
    status_id: UUID | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class LeadUpdate(BaseModel):
    owner_id: UUID | None = None
    project_id: UUID | None = None
    source: str | None = None
    payload: dict[str, Any] | None = None
    row_version: int | None = None


class LeadTransitionRequest(BaseModel):
    status_id: UUID
    payload: dict[str, Any] = Field(default_factory=dict)
    row_version: int | None = None


class BulkTransferRequest(BaseModel):
    lead_ids: list[UUID] = Field(min_length=1)
    from_owner_id: UUID
    to_owner_id: UUID
    project_id: UUID | None = None


class BulkTransferResult(BaseModel):
    transferred: int
    lead_ids: list[UUID]


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    project_id: UUID | None
    source: str | None
    status_id: UUID
    payload: dict[str, Any]
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    row_version: int


class LeadStatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    previous_status_id: UUID
    previous_payload: dict[str, Any]
    changed_at: datetime
    changed_by: UUID
