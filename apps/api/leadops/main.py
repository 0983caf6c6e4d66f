from collections.abc import Callable
from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.orm import Session

from leadops.api.routes import router as api_router
from leadops.core.config import get_settings
from leadops.core.database import SessionLocal
from leadops.core.events import DomainEvent, event_bus
from leadops.logging import configure_logging
from leadops.metrics import observe_reminder_schedule_failure
from leadops.middleware.rate_limit import MutationRateLimitMiddleware
from leadops.middleware.request_context import RequestContextMiddleware
from leadops.middleware.request_logging import RequestLoggingMiddleware
from leadops.otel import get_fastapi_server_request_hook, setup_otel
from leadops.platform.security.seniority import build_default_seniority_lookup, set_seniority_lookup
from leadops.reminders.service import reminder_service


configure_logging()
logger = logging.getLogger("leadops.lifecycle")


_session_factory: Callable[[], Session] = SessionLocal


def _on_lead_status_changed(event: DomainEvent) -> None:
    if not get_settings().reminders_enabled or not isinstance(event.payload, dict):
        return
    envelope: dict[str, Any] = event.payload
    try:
        with _session_factory() as session:
            reminder_service.handle_lead_status_changed(session, envelope)
    except Exception as exc:
        observe_reminder_schedule_failure("lead")
        logger.exception("lead_reminder_schedule_failed", extra={"event_name": event.name, "error": str(exc)[:500]})


def _on_task_created(event: DomainEvent) -> None:
    if not get_settings().reminders_enabled or not isinstance(event.payload, dict):
        return
    envelope: dict[str, Any] = event.payload
    try:
        with _session_factory() as session:
            reminder_service.handle_task_created(session, envelope)
    except Exception as exc:
        observe_reminder_schedule_failure("task")
        logger.exception("task_reminder_schedule_failed", extra={"event_name": event.name, "error": str(exc)[:500]})


def register_subscribers(session_factory: Callable[[], Session] = SessionLocal) -> None:
    global _session_factory
    _session_factory = session_factory
    # subscribe() ignores handlers that are already registered.
    event_bus.subscribe("lead.status_changed", _on_lead_status_changed)
    event_bus.subscribe("task.created", _on_task_created)


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_subscribers(app.state.session_factory)
    event_bus.publish("system.started", {"service": "leadops-api"})
    yield


app = FastAPI(title="LeadOps API", version="0.1.0", lifespan=lifespan)
app.state.session_factory = SessionLocal
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)

settings = get_settings()
set_seniority_lookup(build_default_seniority_lookup())

if settings.otel_enabled:
    setup_otel("leadops-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
