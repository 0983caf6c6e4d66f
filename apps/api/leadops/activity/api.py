from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.activity.schemas import ActivityRead
from leadops.activity.service import activity_service
from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission


router = APIRouter(prefix="/api/activities", tags=["activities"])


@router.get("", response_model=list[ActivityRead])
def list_activities(
    request: Request,
    action: str | None = Query(default=None),
    actor_id: uuid.UUID | None = Query(default=None),
    project_id: uuid.UUID | None = Query(default=None),
    occurred_from: datetime | None = Query(default=None),
    occurred_to: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ActivityRead] | JSONResponse:
    try:
        require_permission(ctx, "activities.read")
        return activity_service.list_activities(
            db,
            ctx,
            action=action,
            actor_id=actor_id,
            project_id=project_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            limit=limit,
            offset=offset,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)
