from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from leadops.context import get_correlation_id
from leadops.core.auth import AuthUser, get_current_user
from leadops.core.database import get_db
from leadops.platform.security.context import AuthContext
from leadops.principals.models import Principal
from leadops.principals.service import to_auth_context


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
    auth_user: AuthUser = Depends(get_current_user),
) -> AuthContext:
    """Resolve the JWT subject to an active principal; permissions come from the token's roles claim."""

    try:
        principal_id = uuid.UUID(auth_user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required") from None

    principal = db.get(Principal, principal_id)
    if principal is None or not principal.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown or inactive principal")

    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return to_auth_context(principal, auth_user.roles, correlation_id=correlation_id)
