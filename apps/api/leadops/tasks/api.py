from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission
from leadops.tasks.schemas import TaskCreate, TaskRead, TaskStatusUpdate
from leadops.tasks.service import task_service


router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TaskRead | JSONResponse:
    try:
        require_permission(ctx, "tasks.create")
        return task_service.create_task(db, ctx, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    project_id: uuid.UUID | None = Query(default=None),
    assigned_to: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[TaskRead] | JSONResponse:
    try:
        require_permission(ctx, "tasks.read")
        return task_service.list_tasks(db, ctx, status=status_filter, project_id=project_id, assigned_to=assigned_to)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TaskRead | JSONResponse:
    try:
        require_permission(ctx, "tasks.read")
        return task_service.get_task(db, ctx, task_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{task_id}/status", response_model=TaskRead)
def update_task_status(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TaskRead | JSONResponse:
    try:
        require_permission(ctx, "tasks.update")
        return task_service.update_status(db, ctx, task_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)
