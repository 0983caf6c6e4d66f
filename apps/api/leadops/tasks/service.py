from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from leadops import audit, events
from leadops.core.timeutils import as_utc
from leadops.hierarchy.resolver import scope_resolver
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import NotFoundError, PermissionDeniedError, ValidationError
from leadops.principals.models import Principal
from leadops.reminders.models import Reminder
from leadops.tasks.models import Task
from leadops.tasks.repository import task_repository
from leadops.tasks.schemas import TaskCreate, TaskRead, TaskStatusUpdate


logger = logging.getLogger("leadops.tasks")

_CLOSED_STATUSES = {"completed", "cancelled"}


@dataclass(slots=True)
class TaskService:
    def create_task(self, session: Session, ctx: AuthContext, dto: TaskCreate) -> TaskRead:
        if dto.task_type == "project" and dto.project_id is None:
            raise ValidationError("project_id is required for project tasks", details={"field": "project_id"})
        if session.get(Principal, dto.assigned_to) is None:
            raise NotFoundError("assignee not found", details={"principal_id": str(dto.assigned_to)})

        scope = scope_resolver.resolve_scope(session, ctx)
        if not scope.allows(dto.assigned_to, dto.project_id):
            raise PermissionDeniedError(
                "assignee is outside the acting principal's scope",
                details={"principal_id": str(dto.assigned_to)},
            )

        task = Task(
            title=dto.title,
            description=dto.description,
            assigned_to=dto.assigned_to,
            project_id=dto.project_id,
            task_type=dto.task_type,
            priority=dto.priority,
            due_at=as_utc(dto.due_at) if dto.due_at is not None else None,
            created_by=ctx.principal_id,
        )
        session.add(task)
        session.commit()
        session.refresh(task)
        task_read = TaskRead.model_validate(task)

        audit.record(
            session,
            actor_id=ctx.principal_id,
            action="task_created",
            owner_id=task_read.assigned_to,
            project_id=task_read.project_id,
            details={"task_id": str(task_read.id), "title": task_read.title},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                "task.created",
                ctx.actor_id,
                {"task_id": str(task_read.id), "assigned_to": str(task_read.assigned_to)},
            )
        )
        return task_read

    def list_tasks(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        status: str | None = None,
        project_id: uuid.UUID | None = None,
        assigned_to: uuid.UUID | None = None,
    ) -> list[TaskRead]:
        scope = scope_resolver.resolve_scope(session, ctx, project_filter=project_id)
        stmt = select(Task)
        if status:
            stmt = stmt.where(Task.status == status)
        if project_id is not None:
            stmt = stmt.where(Task.project_id == project_id)
        if assigned_to is not None:
            stmt = stmt.where(Task.assigned_to == assigned_to)
        stmt = task_repository.apply_scope_query(stmt, scope)
        rows = session.scalars(stmt.order_by(Task.due_at.asc(), Task.created_at.asc())).all()
        return [TaskRead.model_validate(row) for row in rows]

    def get_task(self, session: Session, ctx: AuthContext, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(self._load_visible(session, ctx, task_id))

    def update_status(self, session: Session, ctx: AuthContext, task_id: uuid.UUID, dto: TaskStatusUpdate) -> TaskRead:
        task = self._load_visible(session, ctx, task_id)
        previous = task.status
        task.status = dto.status
        if dto.status in _CLOSED_STATUSES:
            session.execute(
                update(Reminder)
                .where(Reminder.related_type == "task", Reminder.related_id == task.id, Reminder.status == "pending")
                .values(status="dismissed")
                .execution_options(synchronize_session=False)
            )
        session.commit()
        session.refresh(task)
        logger.info("task_status_changed", extra={"resource": str(task.id), "reason": f"{previous}->{task.status}"})
        events.publish(
            events.build_envelope(
                "task.status_changed",
                ctx.actor_id,
                {"task_id": str(task.id), "from_status": previous, "to_status": task.status},
            )
        )
        return TaskRead.model_validate(task)

    def _load_visible(self, session: Session, ctx: AuthContext, task_id: uuid.UUID) -> Task:
        task = session.get(Task, task_id)
        scope = scope_resolver.resolve_scope(session, ctx)
        if task is None or not task_repository.can_view(task, scope):
            raise NotFoundError("task not found", details={"task_id": str(task_id)})
        return task


task_service = TaskService()
