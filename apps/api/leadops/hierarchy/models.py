from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadops.core.database import Base
from leadops.core.timeutils import utcnow


EDGE_CONTEXTS = ("project", "global", "superadmin", "custom")


class HierarchyRecord(Base):
    __tablename__ = "hierarchy_record"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    principal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("principal.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    edges: Mapped[list[ReportingEdge]] = relationship(
        "ReportingEdge",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="ReportingEdge.position",
    )


class ReportingEdge(Base):
    __tablename__ = "reporting_edge"
    __table_args__ = (
        Index("ix_reporting_edge_subordinate_position", "subordinate_id", "position"),
        Index("ix_reporting_edge_supervisor", "supervisor_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("hierarchy_record.id", ondelete="CASCADE"),
        nullable=False,
    )
    subordinate_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("principal.id"), nullable=False)
    supervisor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("principal.id"), nullable=False)
    context: Mapped[str] = mapped_column(String(16), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    record: Mapped[HierarchyRecord] = relationship("HierarchyRecord", back_populates="edges")
