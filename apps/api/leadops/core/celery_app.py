import logging

from celery import Celery

from leadops.core.config import get_settings
from leadops.core.database import SessionLocal
from leadops.reminders.service import reminder_service

settings = get_settings()
logger = logging.getLogger("leadops.worker")

celery_app = Celery("leadops_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "leadops.reminders.dispatch_due",
        "schedule": float(settings.reminder_dispatch_interval_seconds),
    }
}


@celery_app.task(name="leadops.reminders.dispatch_due")
def dispatch_due_reminders() -> int:
    with SessionLocal() as session:
        dispatched = reminder_service.dispatch_due(session)
    logger.info("reminders_dispatch_completed", extra={"count": dispatched})
    return dispatched
