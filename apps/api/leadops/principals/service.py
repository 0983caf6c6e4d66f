from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadops.hierarchy.models import HierarchyRecord
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import ConflictError, NotFoundError
from leadops.platform.security.seniority import SeniorityLookup, get_seniority_lookup
from leadops.principals.models import Principal
from leadops.principals.schemas import PrincipalCreate, PrincipalRead, PrincipalUpdate


logger = logging.getLogger("leadops.principals")


class PrincipalService:
    def __init__(self, seniority: SeniorityLookup | None = None) -> None:
        self._seniority = seniority

    def create_principal(self, session: Session, dto: PrincipalCreate) -> PrincipalRead:
        email = dto.email.strip().lower()
        exists = session.scalar(select(Principal.id).where(func.lower(Principal.email) == email))
        if exists is not None:
            raise ConflictError("principal email already exists", details={"email": email})

        principal = Principal(name=dto.name, email=email, phone=dto.phone, role=dto.role, level=dto.level)
        session.add(principal)
        session.commit()
        session.refresh(principal)
        return PrincipalRead.model_validate(principal)

    def get_principal(self, session: Session, principal_id: uuid.UUID) -> PrincipalRead:
        return PrincipalRead.model_validate(self.load(session, principal_id))

    def list_principals(self, session: Session, *, role: str | None = None, active_only: bool = False) -> list[PrincipalRead]:
        stmt = select(Principal)
        if role:
            stmt = stmt.where(Principal.role == role)
        if active_only:
            stmt = stmt.where(Principal.is_active.is_(True))
        rows = session.scalars(stmt.order_by(Principal.level.asc(), Principal.name.asc())).all()
        return [PrincipalRead.model_validate(row) for row in rows]

    def update_principal(self, session: Session, principal_id: uuid.UUID, dto: PrincipalUpdate) -> PrincipalRead:
        principal = self.load(session, principal_id)
        changes = dto.model_dump(exclude_unset=True)
        for key, value in changes.items():
            # phone is the only clearable attribute
            if value is None and key != "phone":
                continue
            setattr(principal, key, value)

        if "level" in changes and changes["level"] is not None:
            record = session.scalar(select(HierarchyRecord).where(HierarchyRecord.principal_id == principal.id))
            if record is not None:
                record.level = principal.level

        session.commit()
        session.refresh(principal)
        if "level" in changes or "role" in changes:
            (self._seniority or get_seniority_lookup()).invalidate(principal.id)
            logger.info("principal_seniority_invalidated", extra={"subordinate_id": str(principal.id)})
        return PrincipalRead.model_validate(principal)

    def load(self, session: Session, principal_id: uuid.UUID) -> Principal:
        principal = session.get(Principal, principal_id)
        if principal is None:
            raise NotFoundError("principal not found", details={"principal_id": str(principal_id)})
        return principal

    def find_senior_most(self, session: Session) -> Principal | None:
        lookup = self._seniority or get_seniority_lookup()
        rows = session.scalars(
            select(Principal).where(Principal.is_active.is_(True)).order_by(Principal.level.asc(), Principal.created_at.asc())
        ).all()
        for row in rows:
            if lookup.is_senior_most(row.id, row.level, row.role):
                return row
        return None


def to_auth_context(principal: Principal, permissions: list[str], correlation_id: str | None = None) -> AuthContext:
    return AuthContext(
        principal_id=principal.id,
        role=principal.role,
        level=principal.level,
        permissions=list(permissions),
        correlation_id=correlation_id,
    )


principal_service = PrincipalService()
