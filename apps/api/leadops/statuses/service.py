from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadops.leads.models import Lead
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import ConflictError, NotFoundError
from leadops.statuses.fields import validate_field_specs
from leadops.statuses.models import LeadStatus
from leadops.statuses.schemas import FieldSpec, LeadStatusCreate, LeadStatusRead, LeadStatusUpdate


logger = logging.getLogger("leadops.statuses")


def _name_key(name: str) -> str:
    return name.strip().lower()


def field_specs(status: LeadStatus) -> list[FieldSpec]:
    return [FieldSpec.model_validate(item) for item in status.fields or []]


@dataclass(slots=True)
class StatusSchemaRegistry:
    def create(self, session: Session, ctx: AuthContext, dto: LeadStatusCreate) -> LeadStatusRead:
        name = dto.name.strip()
        self._ensure_name_free(session, name)
        fields = validate_field_specs(dto.fields)
        if dto.is_default:
            self._ensure_no_other_default(session)

        status = LeadStatus(
            name=name,
            name_key=_name_key(name),
            fields=[spec.model_dump() for spec in fields],
            is_final=dto.is_final,
            is_default=dto.is_default,
        )
        session.add(status)
        self._commit(session, name)
        session.refresh(status)
        logger.info("lead_status_created", extra={"status_id": str(status.id), "actor_id": ctx.actor_id})
        return LeadStatusRead.model_validate(status)

    def update(self, session: Session, ctx: AuthContext, status_id: uuid.UUID, dto: LeadStatusUpdate) -> LeadStatusRead:
        status = self.load(session, status_id)
        changes = dto.model_dump(exclude_unset=True)

        if changes.get("name") is not None:
            name = dto.name.strip() if dto.name else status.name
            self._ensure_name_free(session, name, exclude_id=status.id)
            status.name = name
            status.name_key = _name_key(name)
        if dto.fields is not None:
            status.fields = [spec.model_dump() for spec in validate_field_specs(dto.fields)]
        if dto.is_default is not None:
            if dto.is_default and not status.is_default:
                self._ensure_no_other_default(session, exclude_id=status.id)
            status.is_default = dto.is_default
        if dto.is_final is not None and dto.is_final != status.is_final:
            if self.is_referenced(session, status.id):
                raise ConflictError(
                    "cannot change is_final while leads use this status",
                    details={"status_id": str(status.id), "field": "is_final"},
                )
            status.is_final = dto.is_final

        self._commit(session, status.name)
        session.refresh(status)
        logger.info("lead_status_updated", extra={"status_id": str(status.id), "actor_id": ctx.actor_id})
        return LeadStatusRead.model_validate(status)

    def delete(self, session: Session, ctx: AuthContext, status_id: uuid.UUID) -> None:
        status = self.load(session, status_id)
        if status.is_final:
            raise ConflictError("final status cannot be deleted", details={"status_id": str(status.id)})
        if status.is_default:
            raise ConflictError("default status cannot be deleted", details={"status_id": str(status.id)})
        if self.is_referenced(session, status.id):
            raise ConflictError("status is in use by leads", details={"status_id": str(status.id)})

        session.delete(status)
        session.commit()
        logger.info("lead_status_deleted", extra={"status_id": str(status_id), "actor_id": ctx.actor_id})

    def list_statuses(self, session: Session) -> list[LeadStatusRead]:
        rows = session.scalars(select(LeadStatus).order_by(LeadStatus.created_at.asc(), LeadStatus.name.asc())).all()
        return [LeadStatusRead.model_validate(row) for row in rows]

    def get_status(self, session: Session, status_id: uuid.UUID) -> LeadStatusRead:
        return LeadStatusRead.model_validate(self.load(session, status_id))

    def get_default(self, session: Session) -> LeadStatus | None:
        return session.scalar(select(LeadStatus).where(LeadStatus.is_default.is_(True)))

    def load(self, session: Session, status_id: uuid.UUID) -> LeadStatus:
        status = session.get(LeadStatus, status_id)
        if status is None:
            raise NotFoundError("lead status not found", details={"status_id": str(status_id)})
        return status

    def is_referenced(self, session: Session, status_id: uuid.UUID) -> bool:
        return session.scalar(select(Lead.id).where(Lead.status_id == status_id).limit(1)) is not None

    def _ensure_name_free(self, session: Session, name: str, exclude_id: uuid.UUID | None = None) -> None:
        stmt = select(LeadStatus.id).where(LeadStatus.name_key == _name_key(name))
        if exclude_id is not None:
            stmt = stmt.where(LeadStatus.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise ConflictError("lead status name already exists", details={"name": name})

    def _ensure_no_other_default(self, session: Session, exclude_id: uuid.UUID | None = None) -> None:
        stmt = select(LeadStatus.id).where(LeadStatus.is_default.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(LeadStatus.id != exclude_id)
        existing = session.scalar(stmt)
        if existing is not None:
            raise ConflictError("a default status already exists", details={"status_id": str(existing)})

    @staticmethod
    def _commit(session: Session, name: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("lead status conflicts with an existing definition", details={"name": name}) from exc


status_registry = StatusSchemaRegistry()
