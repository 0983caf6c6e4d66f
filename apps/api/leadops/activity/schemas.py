from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID | None
    actor_id: UUID
    owner_id: UUID | None
    project_id: UUID | None
    action: str
    details: dict[str, Any]
    occurred_at: datetime
    correlation_id: str | None
