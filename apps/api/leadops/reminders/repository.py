from __future__ import annotations

from leadops.platform.security.repository import BaseRepository
from leadops.reminders.models import Reminder


class ReminderRepository(BaseRepository):
    resource = "reminder"
    model = Reminder


reminder_repository = ReminderRepository()
