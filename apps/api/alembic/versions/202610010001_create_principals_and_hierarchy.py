"""create principals and reporting hierarchy

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "principal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=64), nullable=False, server_default="sales"),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "hierarchy_record",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("principal_id", sa.Uuid(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["principal_id"], ["principal.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("principal_id"),
    )

    op.create_table(
        "reporting_edge",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("subordinate_id", sa.Uuid(), nullable=False),
        sa.Column("supervisor_id", sa.Uuid(), nullable=False),
        sa.Column("context", sa.String(length=16), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("label", sa.Text(), nullable=True),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "context IN ('project', 'global', 'superadmin', 'custom')",
            name="ck_reporting_edge_context",
        ),
        sa.CheckConstraint(
            "(context = 'project') = (project_id IS NOT NULL)",
            name="ck_reporting_edge_project_iff_project_context",
        ),
        sa.CheckConstraint("subordinate_id <> supervisor_id", name="ck_reporting_edge_not_self"),
        sa.ForeignKeyConstraint(["record_id"], ["hierarchy_record.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subordinate_id"], ["principal.id"]),
        sa.ForeignKeyConstraint(["supervisor_id"], ["principal.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_reporting_edge_subordinate_position",
        "reporting_edge",
        ["subordinate_id", "position"],
        unique=False,
    )
    op.create_index("ix_reporting_edge_supervisor", "reporting_edge", ["supervisor_id"], unique=False)
    # Containment lookups (path LIKE '%/<id>/%') on Postgres.
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
    op.execute("CREATE INDEX ix_reporting_edge_path_trgm ON reporting_edge USING gin (path gin_trgm_ops)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_reporting_edge_path_trgm")
    op.drop_index("ix_reporting_edge_supervisor", table_name="reporting_edge")
    op.drop_index("ix_reporting_edge_subordinate_position", table_name="reporting_edge")
    op.drop_table("reporting_edge")
    op.drop_table("hierarchy_record")
    op.drop_table("principal")
