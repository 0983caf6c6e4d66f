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
from leadops.principals.schemas import PrincipalCreate, PrincipalRead, PrincipalUpdate
from leadops.principals.service import principal_service


router = APIRouter(prefix="/api/principals", tags=["principals"])


@router.post("", response_model=PrincipalRead, status_code=status.HTTP_201_CREATED)
def create_principal(
    request: Request,
    dto: PrincipalCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> PrincipalRead | JSONResponse:
    try:
        require_permission(ctx, "principals.manage")
        return principal_service.create_principal(db, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[PrincipalRead])
def list_principals(
    request: Request,
    role: str | None = Query(default=None),
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[PrincipalRead] | JSONResponse:
    try:
        require_permission(ctx, "principals.read")
        return principal_service.list_principals(db, role=role, active_only=active_only)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{principal_id}", response_model=PrincipalRead)
def get_principal(
    request: Request,
    principal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> PrincipalRead | JSONResponse:
    try:
        if principal_id != ctx.principal_id:
            require_permission(ctx, "principals.read")
        return principal_service.get_principal(db, principal_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{principal_id}", response_model=PrincipalRead)
def update_principal(
    request: Request,
    principal_id: uuid.UUID,
    dto: PrincipalUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> PrincipalRead | JSONResponse:
    try:
        require_permission(ctx, "principals.manage")
        return principal_service.update_principal(db, principal_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)
