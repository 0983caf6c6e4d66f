from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.activity.models import ActivityLog
from leadops.context import get_correlation_id
from leadops.metrics import observe_audit_write_failure

logger = logging.getLogger("leadops.audit")


def record(
    session: Session,
    *,
    actor_id: uuid.UUID,
    action: str,
    lead_id: uuid.UUID | None = None,
    owner_id: uuid.UUID | None = None,
    project_id: uuid.UUID | None = None,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> ActivityLog | None:
    """Append one activity row in its own commit.

    Runs after the mutation it describes has been committed; a failed write is
    logged and dropped so the caller's outcome stands.
    """

    entry = ActivityLog(
        lead_id=lead_id,
        actor_id=actor_id,
        owner_id=owner_id,
        project_id=project_id,
        action=action,
        details=details or {},
        correlation_id=correlation_id or get_correlation_id(),
    )
    try:
        session.add(entry)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        observe_audit_write_failure()
        logger.exception(
            "audit_write_failed",
            extra={"lead_id": str(lead_id) if lead_id else None, "reason": action, "error": str(exc)[:500]},
        )
        return None
    return entry
