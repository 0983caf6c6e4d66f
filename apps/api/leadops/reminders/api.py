from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission
from leadops.reminders.schemas import FollowUpBuckets, ReminderCreate, ReminderRead
from leadops.reminders.service import reminder_service


router = APIRouter(prefix="/api/reminders", tags=["reminders"])
follow_ups_router = APIRouter(prefix="/api/follow-ups", tags=["reminders"])


@router.post("", response_model=ReminderRead, status_code=status.HTTP_201_CREATED)
def create_reminder(
    request: Request,
    dto: ReminderCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ReminderRead | JSONResponse:
    try:
        require_permission(ctx, "reminders.write")
        return reminder_service.create_reminder(db, ctx, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[ReminderRead])
def list_reminders(
    request: Request,
    related_type: Literal["lead", "task"] | None = Query(default=None),
    related_id: uuid.UUID | None = Query(default=None),
    include_dismissed: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ReminderRead] | JSONResponse:
    try:
        require_permission(ctx, "reminders.read")
        return reminder_service.list_reminders(
            db,
            ctx,
            related_type=related_type,
            related_id=related_id,
            include_dismissed=include_dismissed,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{reminder_id}/dismiss", response_model=ReminderRead)
def dismiss_reminder(
    request: Request,
    reminder_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ReminderRead | JSONResponse:
    try:
        require_permission(ctx, "reminders.write")
        return reminder_service.dismiss(db, ctx, reminder_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@follow_ups_router.get("", response_model=FollowUpBuckets)
def list_follow_ups(
    request: Request,
    owner_id: uuid.UUID | None = Query(default=None),
    project_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> FollowUpBuckets | JSONResponse:
    try:
        require_permission(ctx, "reminders.read")
        return reminder_service.list_follow_ups(db, ctx, owner_id=owner_id, project_id=project_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
