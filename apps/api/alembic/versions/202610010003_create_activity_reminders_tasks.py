"""create activity log, reminders and tasks

Revision ID: 202610010003
Revises: 202610010002
Create Date: 2026-10-01 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010003"
down_revision: str | None = "202610010002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "activity_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_lead", "activity_log", ["lead_id"], unique=False)
    op.create_index("ix_activity_log_owner_project", "activity_log", ["owner_id", "project_id"], unique=False)

    op.create_table(
        "task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("task_type", sa.String(length=16), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assigned_to"], ["principal.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_assignee_project", "task", ["assigned_to", "project_id"], unique=False)

    op.create_table(
        "reminder",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("remind_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("related_type", sa.String(length=16), nullable=False),
        sa.Column("related_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("related_type IN ('lead', 'task')", name="ck_reminder_related_type"),
        sa.CheckConstraint("status IN ('pending', 'sent', 'dismissed')", name="ck_reminder_status"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reminder_owner_remind_at", "reminder", ["owner_id", "remind_at"], unique=False)
    op.create_index("ix_reminder_related", "reminder", ["related_type", "related_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_reminder_related", table_name="reminder")
    op.drop_index("ix_reminder_owner_remind_at", table_name="reminder")
    op.drop_table("reminder")
    op.drop_index("ix_task_assignee_project", table_name="task")
    op.drop_table("task")
    op.drop_index("ix_activity_log_owner_project", table_name="activity_log")
    op.drop_index("ix_activity_log_lead", table_name="activity_log")
    op.drop_table("activity_log")
