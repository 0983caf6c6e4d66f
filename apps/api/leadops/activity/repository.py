from __future__ import annotations

from leadops.activity.models import ActivityLog
from leadops.platform.security.repository import BaseRepository


class ActivityRepository(BaseRepository):
    resource = "activity"
    model = ActivityLog


activity_repository = ActivityRepository()
