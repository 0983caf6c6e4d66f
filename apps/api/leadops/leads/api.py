from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.activity.schemas import ActivityRead
from leadops.activity.service import activity_service
from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.leads.schemas import (
    BulkTransferRequest,
    BulkTransferResult,
    LeadCreate,
    LeadRead,
    LeadStatusHistoryRead,
    LeadTransitionRequest,
    LeadUpdate,
)
from leadops.leads.service import lead_engine
from leadops.middleware.request_context import get_request_context
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission


router = APIRouter(prefix="/api/leads", tags=["leads"])


@router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.create")
        return lead_engine.create(db, ctx, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    owner_id: uuid.UUID | None = Query(default=None),
    status_id: uuid.UUID | None = Query(default=None),
    project_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        if project_id is None:
            # Clients pinned to a project send it as a header instead of a query parameter.
            context = get_request_context(request)
            project_id = context.project_id if context is not None else None
        return list(
            lead_engine.list_leads(
                db,
                ctx,
                owner_id=owner_id,
                status_id=status_id,
                project_id=project_id,
                limit=limit,
                offset=offset,
            )
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/bulk-transfer", response_model=BulkTransferResult)
def bulk_transfer(
    request: Request,
    dto: BulkTransferRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> BulkTransferResult | JSONResponse:
    try:
        require_permission(ctx, "leads.transfer")
        return lead_engine.bulk_transfer(db, ctx, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        return lead_engine.get_lead(db, ctx, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{lead_id}", response_model=LeadRead)
def edit_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.update")
        return lead_engine.edit(db, ctx, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{lead_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> dict[str, str] | JSONResponse:
    try:
        require_permission(ctx, "leads.delete")
        lead_engine.delete(db, ctx, lead_id)
        return {"status": "deleted"}
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{lead_id}/status", response_model=LeadRead)
def change_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadTransitionRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.change_status")
        return lead_engine.transition(db, ctx, lead_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{lead_id}/history", response_model=list[LeadStatusHistoryRead])
def lead_history(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadStatusHistoryRead] | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        return lead_engine.history(db, ctx, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{lead_id}/activities", response_model=list[ActivityRead])
def lead_activities(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ActivityRead] | JSONResponse:
    try:
        require_permission(ctx, "activities.read")
        return activity_service.list_for_lead(db, ctx, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
