from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadops.core.database import Base
from leadops.core.timeutils import utcnow


class Lead(Base):
    __tablename__ = "lead"
    __table_args__ = (
        Index("ix_lead_owner_project", "owner_id", "project_id"),
        Index("ix_lead_status", "status_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("principal.id"), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("lead_status.id"), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    history: Mapped[list[LeadStatusHistory]] = relationship(
        "LeadStatusHistory",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadStatusHistory.sequence",
    )


class LeadStatusHistory(Base):
    __tablename__ = "lead_status_history"
    __table_args__ = (UniqueConstraint("lead_id", "sequence", name="uq_lead_status_history_sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    # History keeps the id even after the status definition is deleted.
    previous_status_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    previous_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    changed_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    lead: Mapped[Lead] = relationship("Lead", back_populates="history")
