from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PrincipalCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str | None = None
    role: str = Field(default="sales", min_length=1)
    level: int = Field(ge=1)


class PrincipalUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    role: str | None = Field(default=None, min_length=1)
    level: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class PrincipalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    phone: str | None
    role: str
    level: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
