from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


FieldType = Literal["text", "textarea", "number", "date", "datetime", "select", "checkbox", "phone", "email"]


class FieldSpec(BaseModel):
    name: str = Field(min_length=1)
    type: FieldType = "text"
    required: bool = False
    options: list[str] | None = None


class LeadStatusCreate(BaseModel):
    name: str = Field(min_length=1)
    fields: list[FieldSpec] = Field(default_factory=list)
    is_final: bool = False
    is_default: bool = False


class LeadStatusUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    fields: list[FieldSpec] | None = None
    is_final: bool | None = None
    is_default: bool | None = None


class LeadStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    fields: list[FieldSpec]
    is_final: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime
