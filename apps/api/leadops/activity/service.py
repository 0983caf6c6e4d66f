from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadops.activity.models import ActivityLog
from leadops.activity.repository import activity_repository
from leadops.activity.schemas import ActivityRead
from leadops.hierarchy.resolver import scope_resolver
from leadops.leads.service import lead_engine
from leadops.platform.security.context import AuthContext


class ActivityService:
    def list_activities(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        action: str | None = None,
        actor_id: uuid.UUID | None = None,
        project_id: uuid.UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ActivityRead]:
        scope = scope_resolver.resolve_scope(session, ctx, project_filter=project_id)
        stmt = select(ActivityLog)
        if action:
            stmt = stmt.where(ActivityLog.action == action)
        if actor_id is not None:
            stmt = stmt.where(ActivityLog.actor_id == actor_id)
        if project_id is not None:
            stmt = stmt.where(ActivityLog.project_id == project_id)
        if occurred_from is not None:
            stmt = stmt.where(ActivityLog.occurred_at >= occurred_from)
        if occurred_to is not None:
            stmt = stmt.where(ActivityLog.occurred_at <= occurred_to)
        stmt = activity_repository.apply_scope_query(stmt, scope)
        rows = session.scalars(stmt.order_by(ActivityLog.occurred_at.desc()).offset(offset).limit(limit)).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def list_for_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> list[ActivityRead]:
        lead_engine.get_lead(session, ctx, lead_id)
        rows = session.scalars(
            select(ActivityLog).where(ActivityLog.lead_id == lead_id).order_by(ActivityLog.occurred_at.asc())
        ).all()
        return [ActivityRead.model_validate(row) for row in rows]


activity_service = ActivityService()
