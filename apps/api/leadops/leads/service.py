from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from opentelemetry.trace import Status, StatusCode
from sqlalchemy import Select, func, select, update
from sqlalchemy.orm import Session

from leadops import audit, events
from leadops.core.timeutils import utcnow
from leadops.hierarchy.resolver import AccessScopeResolver, scope_resolver
from leadops.leads.models import Lead, LeadStatusHistory
from leadops.leads.repository import lead_repository
from leadops.leads.schemas import (
    BulkTransferRequest,
    BulkTransferResult,
    LeadCreate,
    LeadRead,
    LeadStatusHistoryRead,
    LeadTransitionRequest,
    LeadUpdate,
)
from leadops.metrics import observe_guard_denial, observe_lead_transition
from leadops.otel import domain_span, get_tracer
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from leadops.platform.security.seniority import SeniorityLookup, get_seniority_lookup
from leadops.principals.models import Principal
from leadops.statuses.fields import extract_schedule, validate_payload
from leadops.statuses.models import LeadStatus
from leadops.statuses.service import StatusSchemaRegistry, field_specs, status_registry


logger = logging.getLogger("leadops.leads")
tracer = get_tracer("leadops.leads")


class LeadLifecycleEngine:
    """Lead status workflow: the default status is initial, final statuses are terminal.

    Every status change goes through ``transition``, which appends exactly one
    history entry per applied change. Leaving a final status, and editing,
    deleting or transferring a lead that sits in one, is reserved for
    senior-most principals.
    """

    def __init__(
        self,
        registry: StatusSchemaRegistry | None = None,
        resolver: AccessScopeResolver | None = None,
        seniority: SeniorityLookup | None = None,
    ) -> None:
        self._registry = registry or status_registry
        self._resolver = resolver or scope_resolver
        self._seniority = seniority

    def create(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        default_status = self._registry.get_default(session)
        if default_status is None:
            raise NotFoundError("no default lead status configured")
        if dto.status_id is not None and dto.status_id != default_status.id:
            raise ValidationError(
                "new leads always start in the default status",
                details={"field": "status_id", "default_status_id": str(default_status.id)},
            )

        owner_id = dto.owner_id or ctx.principal_id
        self._ensure_owner_assignable(session, ctx, owner_id, dto.project_id)

        lead = Lead(
            owner_id=owner_id,
            project_id=dto.project_id,
            source=dto.source,
            status_id=default_status.id,
            payload=dict(dto.payload),
            created_by=ctx.principal_id,
        )
        session.add(lead)
        session.commit()
        session.refresh(lead)
        lead_read = LeadRead.model_validate(lead)

        audit.record(
            session,
            actor_id=ctx.principal_id,
            action="created",
            lead_id=lead_read.id,
            owner_id=lead_read.owner_id,
            project_id=lead_read.project_id,
            details={"status_id": str(default_status.id), "status": default_status.name, "source": lead_read.source},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                "lead.created",
                ctx.actor_id,
                {
                    "lead_id": str(lead_read.id),
                    "owner_id": str(lead_read.owner_id),
                    "project_id": str(lead_read.project_id) if lead_read.project_id else None,
                    "status_id": str(default_status.id),
                },
            )
        )
        logger.info("lead_created", extra={"lead_id": str(lead_read.id), "owner_id": str(lead_read.owner_id)})
        return lead_read

    def transition(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadTransitionRequest) -> LeadRead:
        with domain_span(tracer, "leads.transition", **{"lead.id": lead_id, "lead.target_status_id": dto.status_id}) as span:
            try:
                result = self._transition(session, ctx, lead_id, dto)
            except DomainError as exc:
                span.set_status(Status(StatusCode.ERROR, exc.code))
                observe_lead_transition(exc.code)
                raise
            observe_lead_transition("applied")
            return result

    def _transition(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadTransitionRequest) -> LeadRead:
        lead = self._load_visible(session, ctx, lead_id)
        current = self._registry.load(session, lead.status_id)
        self._guard_final(ctx, current, lead, operation="transition")

        target = session.get(LeadStatus, dto.status_id)
        if target is None:
            raise NotFoundError("target lead status not found", details={"status_id": str(dto.status_id)})

        specs = field_specs(target)
        validate_payload(specs, dto.payload)

        expected_version = dto.row_version if dto.row_version is not None else lead.row_version
        before = {"status_id": str(current.id), "status": current.name, "payload": dict(lead.payload or {})}
        next_sequence = (
            session.scalar(
                select(func.coalesce(func.max(LeadStatusHistory.sequence), 0)).where(LeadStatusHistory.lead_id == lead.id)
            )
            or 0
        ) + 1

        session.add(
            LeadStatusHistory(
                lead_id=lead.id,
                sequence=next_sequence,
                previous_status_id=current.id,
                previous_payload=dict(lead.payload or {}),
                changed_at=utcnow(),
                changed_by=ctx.principal_id,
            )
        )
        result = session.execute(
            update(Lead)
            .where(Lead.id == lead.id, Lead.row_version == expected_version)
            .values(
                status_id=target.id,
                payload=dict(dto.payload),
                updated_at=utcnow(),
                row_version=Lead.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise ConflictError("row_version conflict", details={"lead_id": str(lead_id), "row_version": expected_version})
        session.commit()
        session.refresh(lead)
        lead_read = LeadRead.model_validate(lead)

        after = {"status_id": str(target.id), "status": target.name, "payload": dict(lead_read.payload)}
        audit.record(
            session,
            actor_id=ctx.principal_id,
            action="status_changed",
            lead_id=lead_read.id,
            owner_id=lead_read.owner_id,
            project_id=lead_read.project_id,
            details={"before": before, "after": after},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                "lead.status_changed",
                ctx.actor_id,
                {
                    "lead_id": str(lead_read.id),
                    "owner_id": str(lead_read.owner_id),
                    "project_id": str(lead_read.project_id) if lead_read.project_id else None,
                    "from_status_id": str(current.id),
                    "to_status_id": str(target.id),
                    "to_status": target.name,
                    "is_final": target.is_final,
                    "follow_ups": extract_schedule(specs, lead_read.payload),
                },
            )
        )
        logger.info(
            "lead_status_changed",
            extra={"lead_id": str(lead_read.id), "status_id": str(target.id), "count": next_sequence},
        )
        return lead_read

    def edit(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = self._load_visible(session, ctx, lead_id)
        current = self._registry.load(session, lead.status_id)
        self._guard_final(ctx, current, lead, operation="edit")

        changes = dto.model_dump(exclude_unset=True)
        expected_version = changes.pop("row_version", None)
        if expected_version is None:
            expected_version = lead.row_version

        values: dict[str, Any] = {}
        if changes.get("owner_id") is not None or "project_id" in changes:
            owner_id = changes.get("owner_id") or lead.owner_id
            project_id = changes["project_id"] if "project_id" in changes else lead.project_id
            self._ensure_owner_assignable(session, ctx, owner_id, project_id)
            values["owner_id"] = owner_id
            values["project_id"] = project_id
        if "source" in changes:
            values["source"] = changes["source"]
        if changes.get("payload") is not None:
            values["payload"] = {**(lead.payload or {}), **changes["payload"]}
        if not values:
            return LeadRead.model_validate(lead)

        before = {key: _jsonable(getattr(lead, key)) for key in values}
        values["updated_at"] = utcnow()
        values["row_version"] = Lead.row_version + 1
        result = session.execute(
            update(Lead)
            .where(Lead.id == lead.id, Lead.row_version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise ConflictError("row_version conflict", details={"lead_id": str(lead_id), "row_version": expected_version})
        session.commit()
        session.refresh(lead)
        lead_read = LeadRead.model_validate(lead)

        audit.record(
            session,
            actor_id=ctx.principal_id,
            action="updated",
            lead_id=lead_read.id,
            owner_id=lead_read.owner_id,
            project_id=lead_read.project_id,
            details={"before": before, "after": {key: _jsonable(getattr(lead, key)) for key in before}},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope("lead.updated", ctx.actor_id, {"lead_id": str(lead_read.id), "fields": sorted(before)})
        )
        return lead_read

    def delete(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> None:
        lead = self._load_visible(session, ctx, lead_id)
        current = self._registry.load(session, lead.status_id)
        self._guard_final(ctx, current, lead, operation="delete")

        snapshot = {
            "status_id": str(current.id),
            "status": current.name,
            "payload": dict(lead.payload or {}),
            "source": lead.source,
        }
        owner_id, project_id = lead.owner_id, lead.project_id
        session.delete(lead)
        session.commit()

        audit.record(
            session,
            actor_id=ctx.principal_id,
            action="deleted",
            lead_id=lead_id,
            owner_id=owner_id,
            project_id=project_id,
            details={"before": snapshot},
            correlation_id=ctx.correlation_id,
        )
        events.publish(events.build_envelope("lead.deleted", ctx.actor_id, {"lead_id": str(lead_id)}))
        logger.info("lead_deleted", extra={"lead_id": str(lead_id)})

    def bulk_transfer(self, session: Session, ctx: AuthContext, dto: BulkTransferRequest) -> BulkTransferResult:
        target_owner = session.get(Principal, dto.to_owner_id)
        if target_owner is None:
            raise NotFoundError("target owner not found", details={"principal_id": str(dto.to_owner_id)})

        scope = self._resolver.resolve_scope(session, ctx)
        stmt: Select[tuple[Lead]] = select(Lead).where(
            Lead.id.in_(list(dict.fromkeys(dto.lead_ids))),
            Lead.owner_id == dto.from_owner_id,
        )
        leads = list(session.scalars(lead_repository.apply_scope_query(stmt, scope).order_by(Lead.created_at.asc())).all())
        if not leads:
            raise NotFoundError("no matching leads found", details={"from_owner_id": str(dto.from_owner_id)})

        if not self._is_senior_most(ctx):
            final_ids = {row.id for row in session.scalars(select(LeadStatus).where(LeadStatus.is_final.is_(True))).all()}
            blocked = [lead.id for lead in leads if lead.status_id in final_ids]
            if blocked:
                observe_guard_denial("bulk_transfer")
                raise PermissionDeniedError(
                    "only a senior-most principal can transfer leads in a final status",
                    details={"lead_ids": [str(item) for item in blocked]},
                )

        moves: list[tuple[uuid.UUID, uuid.UUID | None, uuid.UUID | None]] = []
        for lead in leads:
            new_project = dto.project_id if dto.project_id is not None else lead.project_id
            if not scope.allows(target_owner.id, new_project):
                raise PermissionDeniedError(
                    "target owner is outside the acting principal's scope",
                    details={"principal_id": str(target_owner.id), "lead_id": str(lead.id)},
                )
            moves.append((lead.id, lead.project_id, new_project))

        # Validated as a whole before any row is touched.
        for lead, (_, _, new_project) in zip(leads, moves):
            lead.owner_id = target_owner.id
            lead.project_id = new_project
            lead.row_version = lead.row_version + 1
        session.commit()

        for moved_id, old_project, new_project in moves:
            audit.record(
                session,
                actor_id=ctx.principal_id,
                action="transferred",
                lead_id=moved_id,
                owner_id=target_owner.id,
                project_id=new_project,
                details={
                    "from_owner_id": str(dto.from_owner_id),
                    "to_owner_id": str(target_owner.id),
                    "old_project_id": str(old_project) if old_project else None,
                    "new_project_id": str(new_project) if new_project else None,
                },
                correlation_id=ctx.correlation_id,
            )
        moved_ids = [item[0] for item in moves]
        events.publish(
            events.build_envelope(
                "lead.transferred",
                ctx.actor_id,
                {
                    "lead_ids": [str(item) for item in moved_ids],
                    "from_owner_id": str(dto.from_owner_id),
                    "to_owner_id": str(target_owner.id),
                },
            )
        )
        logger.info("leads_transferred", extra={"owner_id": str(target_owner.id), "count": len(moved_ids)})
        return BulkTransferResult(transferred=len(moved_ids), lead_ids=moved_ids)

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(self._load_visible(session, ctx, lead_id))

    def list_leads(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        owner_id: uuid.UUID | None = None,
        status_id: uuid.UUID | None = None,
        project_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[LeadRead]:
        scope = self._resolver.resolve_scope(session, ctx, project_filter=project_id)
        stmt: Select[tuple[Lead]] = select(Lead)
        if owner_id is not None:
            stmt = stmt.where(Lead.owner_id == owner_id)
        if status_id is not None:
            stmt = stmt.where(Lead.status_id == status_id)
        if project_id is not None:
            stmt = stmt.where(Lead.project_id == project_id)
        stmt = lead_repository.apply_scope_query(stmt, scope)
        rows = session.scalars(stmt.order_by(Lead.created_at.desc(), Lead.id.asc()).offset(offset).limit(limit)).all()
        return [LeadRead.model_validate(row) for row in rows]

    def history(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> list[LeadStatusHistoryRead]:
        lead = self._load_visible(session, ctx, lead_id)
        rows = session.scalars(
            select(LeadStatusHistory).where(LeadStatusHistory.lead_id == lead.id).order_by(LeadStatusHistory.sequence.asc())
        ).all()
        return [LeadStatusHistoryRead.model_validate(row) for row in rows]

    def _load_visible(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("lead not found", details={"lead_id": str(lead_id)})
        scope = self._resolver.resolve_scope(session, ctx)
        if not lead_repository.can_view(lead, scope):
            raise NotFoundError("lead not found", details={"lead_id": str(lead_id)})
        return lead

    def _guard_final(self, ctx: AuthContext, status: LeadStatus, lead: Lead, *, operation: str) -> None:
        if not status.is_final or self._is_senior_most(ctx):
            return
        observe_guard_denial(operation)
        logger.info(
            "lead_final_status_guard",
            extra={"lead_id": str(lead.id), "status_id": str(status.id), "operation": operation, "actor_id": ctx.actor_id},
        )
        raise PermissionDeniedError(
            f"only a senior-most principal can {operation} a lead in a final status",
            details={"lead_id": str(lead.id), "status_id": str(status.id)},
        )

    def _ensure_owner_assignable(
        self,
        session: Session,
        ctx: AuthContext,
        owner_id: uuid.UUID,
        project_id: uuid.UUID | None,
    ) -> None:
        if session.get(Principal, owner_id) is None:
            raise NotFoundError("owner not found", details={"principal_id": str(owner_id)})
        scope = self._resolver.resolve_scope(session, ctx)
        if not scope.allows(owner_id, project_id):
            raise PermissionDeniedError(
                "owner is outside the acting principal's scope",
                details={"principal_id": str(owner_id), "project_id": str(project_id) if project_id else None},
            )

    def _is_senior_most(self, ctx: AuthContext) -> bool:
        lookup = self._seniority or get_seniority_lookup()
        return lookup.is_senior_most(ctx.principal_id, ctx.level, ctx.role)


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return dict(value)
    return value


lead_engine = LeadLifecycleEngine()
