from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class AuthContext:
    """Acting principal as seen by services: identity, seniority inputs and granted permissions."""

    principal_id: uuid.UUID
    role: str = ""
    level: int = 99
    permissions: list[str] = field(default_factory=list)
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def actor_id(self) -> str:
        return str(self.principal_id)
