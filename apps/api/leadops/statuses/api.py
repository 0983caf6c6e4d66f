from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission
from leadops.statuses.schemas import LeadStatusCreate, LeadStatusRead, LeadStatusUpdate
from leadops.statuses.service import status_registry


router = APIRouter(prefix="/api/lead-statuses", tags=["lead-statuses"])


@router.post("", response_model=LeadStatusRead, status_code=status.HTTP_201_CREATED)
def create_status(
    request: Request,
    dto: LeadStatusCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadStatusRead | JSONResponse:
    try:
        require_permission(ctx, "statuses.manage")
        return status_registry.create(db, ctx, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[LeadStatusRead])
def list_statuses(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadStatusRead]:
    return status_registry.list_statuses(db)


@router.get("/{status_id}", response_model=LeadStatusRead)
def get_status(
    request: Request,
    status_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadStatusRead | JSONResponse:
    try:
        return status_registry.get_status(db, status_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{status_id}", response_model=LeadStatusRead)
def update_status(
    request: Request,
    status_id: uuid.UUID,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadStatusRead | JSONResponse:
    try:
        require_permission(ctx, "statuses.manage")
        return status_registry.update(db, ctx, status_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{status_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_status(
    request: Request,
    status_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> dict[str, str] | JSONResponse:
    try:
        require_permission(ctx, "statuses.manage")
        status_registry.delete(db, ctx, status_id)
        return {"status": "deleted"}
    except DomainError as exc:
        return domain_error_response(request, exc)
