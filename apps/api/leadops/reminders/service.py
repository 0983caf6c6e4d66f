from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, time, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadops.core.config import get_settings
from leadops.core.timeutils import as_utc, utcnow
from leadops.hierarchy.resolver import scope_resolver
from leadops.leads.models import Lead
from leadops.metrics import observe_reminders_scheduled
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import NotFoundError
from leadops.reminders.models import Reminder
from leadops.reminders.repository import reminder_repository
from leadops.reminders.schemas import FollowUpBuckets, ReminderCreate, ReminderRead
from leadops.statuses.fields import parse_datetime
from leadops.tasks.models import Task


logger = logging.getLogger("leadops.reminders")


def offset_label(offset_minutes: int) -> str:
    if offset_minutes >= 1440:
        return f"{offset_minutes // 1440} day(s)"
    if offset_minutes >= 60:
        return f"{offset_minutes // 60} hour(s)"
    return f"{offset_minutes} minute(s)"


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


class ReminderService:
    def schedule_before(
        self,
        session: Session,
        *,
        related_type: str,
        related_id: uuid.UUID,
        owner_id: uuid.UUID,
        project_id: uuid.UUID | None,
        due_at: datetime,
        title_prefix: str,
        subject: str,
        created_by: uuid.UUID | None,
        offsets: Sequence[int] | None = None,
        now: datetime | None = None,
    ) -> list[Reminder]:
        """Create one pending reminder per offset before ``due_at``; offsets already in the past are skipped."""

        due = as_utc(due_at)
        current = as_utc(now) if now is not None else utcnow()
        created: list[Reminder] = []
        for offset in offsets if offsets is not None else get_settings().reminder_offsets_minutes:
            remind_at = due - timedelta(minutes=offset)
            if remind_at <= current:
                continue
            label = offset_label(offset)
            reminder = Reminder(
                title=f"{title_prefix} in {label}: {subject}",
                description=f"Reminder: {title_prefix.lower()} for \"{subject}\" is scheduled in {label} on {due.isoformat()}",
                remind_at=remind_at,
                related_type=related_type,
                related_id=related_id,
                owner_id=owner_id,
                project_id=project_id,
                status="pending",
                created_by=created_by,
            )
            session.add(reminder)
            created.append(reminder)
        return created

    def handle_lead_status_changed(self, session: Session, envelope: dict[str, Any], now: datetime | None = None) -> int:
        payload = envelope.get("payload") or {}
        lead_id = _parse_uuid(payload.get("lead_id"))
        follow_ups = payload.get("follow_ups") or []
        if lead_id is None or not follow_ups:
            return 0

        lead = session.get(Lead, lead_id)
        if lead is None:
            return 0

        created: list[Reminder] = []
        for item in follow_ups:
            due_at = parse_datetime(item.get("at"))
            if due_at is None:
                continue
            created.extend(
                self.schedule_before(
                    session,
                    related_type="lead",
                    related_id=lead.id,
                    owner_id=lead.owner_id,
                    project_id=lead.project_id,
                    due_at=due_at,
                    title_prefix="Lead Follow-up",
                    subject=str(item.get("field") or "follow-up"),
                    created_by=_parse_uuid(envelope.get("actor_user_id")),
                    now=now,
                )
            )
        session.commit()
        observe_reminders_scheduled("lead", len(created))
        logger.info("lead_reminders_scheduled", extra={"lead_id": str(lead.id), "count": len(created)})
        return len(created)

    def handle_task_created(self, session: Session, envelope: dict[str, Any], now: datetime | None = None) -> int:
        payload = envelope.get("payload") or {}
        task_id = _parse_uuid(payload.get("task_id"))
        if task_id is None:
            return 0
        task = session.get(Task, task_id)
        if task is None or task.due_at is None:
            return 0

        created = self.schedule_before(
            session,
            related_type="task",
            related_id=task.id,
            owner_id=task.assigned_to,
            project_id=task.project_id,
            due_at=task.due_at,
            title_prefix="Task due",
            subject=task.title,
            created_by=task.created_by,
            now=now,
        )
        session.commit()
        observe_reminders_scheduled("task", len(created))
        return len(created)

    def create_reminder(self, session: Session, ctx: AuthContext, dto: ReminderCreate) -> ReminderRead:
        scope = scope_resolver.resolve_scope(session, ctx)
        project_id: uuid.UUID | None = None
        if dto.related_type == "lead":
            lead = session.get(Lead, dto.related_id)
            if lead is None or not scope.allows(lead.owner_id, lead.project_id):
                raise NotFoundError("lead not found", details={"lead_id": str(dto.related_id)})
            project_id = lead.project_id
        else:
            task = session.get(Task, dto.related_id)
            if task is None or not scope.allows(task.assigned_to, task.project_id):
                raise NotFoundError("task not found", details={"task_id": str(dto.related_id)})
            project_id = task.project_id

        reminder = Reminder(
            title=dto.title,
            description=dto.description,
            remind_at=as_utc(dto.remind_at),
            related_type=dto.related_type,
            related_id=dto.related_id,
            owner_id=ctx.principal_id,
            project_id=project_id,
            status="pending",
            created_by=ctx.principal_id,
        )
        session.add(reminder)
        session.commit()
        session.refresh(reminder)
        return ReminderRead.model_validate(reminder)

    def list_reminders(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        related_type: str | None = None,
        related_id: uuid.UUID | None = None,
        include_dismissed: bool = False,
    ) -> list[ReminderRead]:
        scope = scope_resolver.resolve_scope(session, ctx)
        stmt = select(Reminder)
        if related_type:
            stmt = stmt.where(Reminder.related_type == related_type)
        if related_id is not None:
            stmt = stmt.where(Reminder.related_id == related_id)
        if not include_dismissed:
            stmt = stmt.where(Reminder.status != "dismissed")
        stmt = reminder_repository.apply_scope_query(stmt, scope)
        rows = session.scalars(stmt.order_by(Reminder.remind_at.asc())).all()
        return [ReminderRead.model_validate(row) for row in rows]

    def list_follow_ups(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        owner_id: uuid.UUID | None = None,
        project_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> FollowUpBuckets:
        """Pending lead reminders bucketed as overdue, today, tomorrow and upcoming (UTC days)."""

        current = as_utc(now) if now is not None else utcnow()
        today_end = datetime.combine(current.date(), time.max, tzinfo=current.tzinfo)
        tomorrow_end = today_end + timedelta(days=1)

        scope = scope_resolver.resolve_scope(session, ctx, project_filter=project_id)
        stmt = select(Reminder).where(Reminder.related_type == "lead", Reminder.status == "pending")
        if owner_id is not None:
            stmt = stmt.where(Reminder.owner_id == owner_id)
        if project_id is not None:
            stmt = stmt.where(Reminder.project_id == project_id)
        stmt = reminder_repository.apply_scope_query(stmt, scope)

        buckets = FollowUpBuckets()
        for row in session.scalars(stmt.order_by(Reminder.remind_at.asc())).all():
            remind_at = as_utc(row.remind_at)
            item = ReminderRead.model_validate(row)
            if remind_at < current:
                buckets.pending.append(item)
            elif remind_at <= today_end:
                buckets.today.append(item)
            elif remind_at <= tomorrow_end:
                buckets.tomorrow.append(item)
            else:
                buckets.upcoming.append(item)
        return buckets

    def dismiss(self, session: Session, ctx: AuthContext, reminder_id: uuid.UUID) -> ReminderRead:
        reminder = session.get(Reminder, reminder_id)
        scope = scope_resolver.resolve_scope(session, ctx)
        if reminder is None or not reminder_repository.can_view(reminder, scope):
            raise NotFoundError("reminder not found", details={"reminder_id": str(reminder_id)})
        reminder.status = "dismissed"
        session.commit()
        session.refresh(reminder)
        return ReminderRead.model_validate(reminder)

    def dispatch_due(self, session: Session, now: datetime | None = None) -> int:
        """Mark pending reminders that are due as sent. Delivery itself is best effort."""

        current = as_utc(now) if now is not None else utcnow()
        due = session.scalars(
            select(Reminder).where(Reminder.status == "pending", Reminder.remind_at <= current).order_by(Reminder.remind_at.asc())
        ).all()
        for reminder in due:
            reminder.status = "sent"
            reminder.sent_at = current
            logger.info(
                "reminder_dispatched",
                extra={"owner_id": str(reminder.owner_id), "resource": reminder.related_type, "count": 1},
            )
        session.commit()
        return len(due)


reminder_service = ReminderService()
