from __future__ import annotations

import logging
import uuid
from collections import deque
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from leadops.hierarchy.models import HierarchyRecord, ReportingEdge
from leadops.hierarchy.schemas import HierarchyRecordRead, ReportingEdgeInput
from leadops.metrics import observe_hierarchy_rejection
from leadops.otel import domain_span, get_tracer
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import CycleError, HierarchyError, NotFoundError, ValidationError
from leadops.platform.security.seniority import SeniorityLookup, get_seniority_lookup
from leadops.principals.models import Principal
from leadops.principals.service import principal_service


logger = logging.getLogger("leadops.hierarchy")
tracer = get_tracer("leadops.hierarchy")

ROOT_OVERSIGHT_LABEL = "Superadmin oversight"


def path_segment(principal_id: uuid.UUID) -> str:
    return f"/{principal_id}/"


def path_ids(path: str) -> list[uuid.UUID]:
    ids: list[uuid.UUID] = []
    for part in path.strip("/").split("/"):
        if not part:
            continue
        try:
            ids.append(uuid.UUID(part))
        except ValueError:
            continue
    return ids


class HierarchyStore:
    """Reporting edges stored as a materialized-path forest.

    Each edge stores ``/<root>/.../<supervisor>/``: the supervisor's own first-edge
    path followed by the supervisor. Descendant paths are not rewritten when an
    ancestor moves; they refresh the next time their own edges are saved.
    """

    def __init__(self, seniority: SeniorityLookup | None = None) -> None:
        self._seniority = seniority

    def upsert_edges(
        self,
        session: Session,
        ctx: AuthContext,
        subordinate_id: uuid.UUID,
        edges: Sequence[ReportingEdgeInput],
    ) -> HierarchyRecordRead:
        with domain_span(tracer, "hierarchy.upsert_edges", **{"hierarchy.subordinate_id": subordinate_id, "hierarchy.edge_count": len(edges)}):
            return self._upsert_edges(session, ctx, subordinate_id, edges)

    def _upsert_edges(
        self,
        session: Session,
        ctx: AuthContext,
        subordinate_id: uuid.UUID,
        edges: Sequence[ReportingEdgeInput],
    ) -> HierarchyRecordRead:
        subordinate = session.get(Principal, subordinate_id)
        if subordinate is None:
            raise NotFoundError("principal not found", details={"principal_id": str(subordinate_id)})

        prepared: list[ReportingEdge] = []
        seen: set[tuple[uuid.UUID, str, uuid.UUID | None]] = set()
        for position, edge in enumerate(edges):
            self._validate_shape(subordinate.id, edge)
            key = (edge.supervisor_id, edge.context, edge.project_id)
            if key in seen:
                observe_hierarchy_rejection("duplicate_edge")
                raise ValidationError(
                    "duplicate reporting edge",
                    details={"supervisor_id": str(edge.supervisor_id), "context": edge.context},
                )
            seen.add(key)

            supervisor = session.get(Principal, edge.supervisor_id)
            if supervisor is None:
                observe_hierarchy_rejection("supervisor_missing")
                raise HierarchyError("supervisor not found", details={"supervisor_id": str(edge.supervisor_id)})
            if supervisor.level >= subordinate.level:
                observe_hierarchy_rejection("supervisor_not_senior")
                raise HierarchyError(
                    "supervisor must be more senior than subordinate",
                    details={
                        "supervisor_id": str(supervisor.id),
                        "supervisor_level": supervisor.level,
                        "subordinate_level": subordinate.level,
                    },
                )

            path = self.parent_path(session, supervisor.id) + f"{supervisor.id}/"
            self._ensure_acyclic(session, subordinate.id, path)
            prepared.append(
                ReportingEdge(
                    subordinate_id=subordinate.id,
                    supervisor_id=supervisor.id,
                    context=edge.context,
                    project_id=edge.project_id,
                    label=edge.label,
                    path=path,
                    position=position,
                )
            )

        record = self._get_or_create_record(session, subordinate)
        record.level = subordinate.level
        record.edges.clear()
        session.flush()
        record.edges.extend(prepared)
        session.flush()
        self.auto_attach_root(session, record)
        session.commit()

        logger.info(
            "hierarchy_edges_upserted",
            extra={"subordinate_id": str(subordinate.id), "count": len(record.edges), "actor_id": ctx.actor_id},
        )
        return self.get_record(session, subordinate.id)

    def auto_attach_root(self, session: Session, record: HierarchyRecord) -> ReportingEdge | None:
        principal = session.get(Principal, record.principal_id)
        if principal is None:
            return None
        lookup = self._seniority or get_seniority_lookup()
        if lookup.is_senior_most(principal.id, record.level, principal.role):
            return None

        root = principal_service.find_senior_most(session)
        if root is None or root.id == principal.id or root.level >= record.level:
            return None
        if any(edge.supervisor_id == root.id for edge in record.edges):
            return None

        edge = ReportingEdge(
            subordinate_id=principal.id,
            supervisor_id=root.id,
            context="superadmin",
            project_id=None,
            label=ROOT_OVERSIGHT_LABEL,
            path=self.parent_path(session, root.id) + f"{root.id}/",
            position=len(record.edges),
        )
        record.edges.append(edge)
        session.flush()
        logger.info("hierarchy_root_attached", extra={"subordinate_id": str(principal.id), "supervisor_id": str(root.id)})
        return edge

    def get_record(self, session: Session, principal_id: uuid.UUID) -> HierarchyRecordRead:
        record = session.scalar(
            select(HierarchyRecord)
            .options(selectinload(HierarchyRecord.edges))
            .where(HierarchyRecord.principal_id == principal_id)
        )
        if record is None:
            raise NotFoundError("hierarchy record not found", details={"principal_id": str(principal_id)})
        return HierarchyRecordRead.model_validate(record)

    def list_descendants(self, session: Session, principal_id: uuid.UUID) -> list[HierarchyRecordRead]:
        record_ids = select(ReportingEdge.record_id).where(ReportingEdge.path.contains(path_segment(principal_id)))
        rows = session.scalars(
            select(HierarchyRecord)
            .options(selectinload(HierarchyRecord.edges))
            .where(HierarchyRecord.id.in_(record_ids))
            .order_by(HierarchyRecord.level.asc())
        ).all()
        return [HierarchyRecordRead.model_validate(row) for row in rows]

    def remove_record(self, session: Session, ctx: AuthContext, principal_id: uuid.UUID) -> None:
        record = session.scalar(select(HierarchyRecord).where(HierarchyRecord.principal_id == principal_id))
        if record is None:
            raise NotFoundError("hierarchy record not found", details={"principal_id": str(principal_id)})
        session.delete(record)
        session.commit()
        logger.info("hierarchy_record_removed", extra={"subordinate_id": str(principal_id), "actor_id": ctx.actor_id})

    def parent_path(self, session: Session, principal_id: uuid.UUID) -> str:
        path = session.scalar(
            select(ReportingEdge.path)
            .where(ReportingEdge.subordinate_id == principal_id)
            .order_by(ReportingEdge.position.asc())
            .limit(1)
        )
        return path or "/"

    def _validate_shape(self, subordinate_id: uuid.UUID, edge: ReportingEdgeInput) -> None:
        if edge.supervisor_id == subordinate_id:
            observe_hierarchy_rejection("self_reporting")
            raise ValidationError("principal cannot report to itself", details={"supervisor_id": str(edge.supervisor_id)})
        if edge.context == "project" and edge.project_id is None:
            observe_hierarchy_rejection("project_missing")
            raise ValidationError(
                "project_id is required for project reporting edges",
                details={"field": "project_id", "supervisor_id": str(edge.supervisor_id)},
            )
        if edge.context != "project" and edge.project_id is not None:
            observe_hierarchy_rejection("project_unexpected")
            raise ValidationError(
                "project_id is only allowed on project reporting edges",
                details={"field": "project_id", "context": edge.context},
            )

    def _ensure_acyclic(self, session: Session, subordinate_id: uuid.UUID, path: str) -> None:
        segment = path_segment(subordinate_id)
        if segment in path:
            self._reject_cycle(subordinate_id, path)

        pending = deque(path_ids(path))
        visited: set[uuid.UUID] = set()
        while pending:
            ancestor_id = pending.popleft()
            if ancestor_id in visited:
                continue
            visited.add(ancestor_id)
            if ancestor_id == subordinate_id:
                self._reject_cycle(subordinate_id, path)
            ancestor_path = self.parent_path(session, ancestor_id)
            if segment in ancestor_path:
                self._reject_cycle(subordinate_id, ancestor_path)
            pending.extend(item for item in path_ids(ancestor_path) if item not in visited)

    @staticmethod
    def _reject_cycle(subordinate_id: uuid.UUID, path: str) -> None:
        observe_hierarchy_rejection("cycle")
        raise CycleError(
            "reporting edge would create a cycle",
            details={"subordinate_id": str(subordinate_id), "path": path},
        )

    @staticmethod
    def _get_or_create_record(session: Session, principal: Principal) -> HierarchyRecord:
        record = session.scalar(
            select(HierarchyRecord)
            .options(selectinload(HierarchyRecord.edges))
            .where(HierarchyRecord.principal_id == principal.id)
        )
        if record is None:
            record = HierarchyRecord(principal_id=principal.id, level=principal.level)
            session.add(record)
            session.flush()
        return record


hierarchy_store = HierarchyStore()
