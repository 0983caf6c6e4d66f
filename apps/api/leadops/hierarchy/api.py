from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadops.api.deps import get_auth_context
from leadops.api.errors import domain_error_response
from leadops.core.database import get_db
from leadops.hierarchy.resolver import scope_resolver
from leadops.hierarchy.schemas import HierarchyRecordRead, ReportingEdgesUpsert, ScopeGrantRead, ScopeRead
from leadops.hierarchy.service import hierarchy_store
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.seniority import require_permission


router = APIRouter(prefix="/api/hierarchy", tags=["hierarchy"])
scope_router = APIRouter(prefix="/api/scope", tags=["hierarchy"])


@router.put("/{principal_id}/edges", response_model=HierarchyRecordRead)
def upsert_edges(
    request: Request,
    principal_id: uuid.UUID,
    dto: ReportingEdgesUpsert,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> HierarchyRecordRead | JSONResponse:
    try:
        require_permission(ctx, "hierarchy.manage")
        return hierarchy_store.upsert_edges(db, ctx, principal_id, dto.edges)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{principal_id}", response_model=HierarchyRecordRead)
def get_record(
    request: Request,
    principal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> HierarchyRecordRead | JSONResponse:
    try:
        if principal_id != ctx.principal_id:
            require_permission(ctx, "hierarchy.read")
        return hierarchy_store.get_record(db, principal_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{principal_id}/descendants", response_model=list[HierarchyRecordRead])
def list_descendants(
    request: Request,
    principal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[HierarchyRecordRead] | JSONResponse:
    try:
        if principal_id != ctx.principal_id:
            require_permission(ctx, "hierarchy.read")
        return hierarchy_store.list_descendants(db, principal_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{principal_id}", status_code=status.HTTP_200_OK, response_model=None)
def remove_record(
    request: Request,
    principal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> dict[str, str] | JSONResponse:
    try:
        require_permission(ctx, "hierarchy.manage")
        hierarchy_store.remove_record(db, ctx, principal_id)
        return {"status": "deleted"}
    except DomainError as exc:
        return domain_error_response(request, exc)


@scope_router.get("", response_model=ScopeRead)
def resolve_own_scope(
    project_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ScopeRead:
    predicate = scope_resolver.resolve_scope(db, ctx, project_filter=project_id)
    grants = sorted(predicate.grants, key=lambda grant: (str(grant.owner_id), str(grant.project_id)))
    return ScopeRead(
        principal_id=ctx.principal_id,
        unrestricted=predicate.unrestricted,
        grants=[ScopeGrantRead(owner_id=grant.owner_id, project_id=grant.project_id) for grant in grants],
    )
