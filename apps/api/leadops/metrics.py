from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

scope_resolutions_total = Counter(
    "scope_resolutions_total",
    "Access scope resolutions by outcome",
    ["kind"],
)

scope_grants_count = Histogram(
    "scope_grants_count",
    "Number of (owner, project) grants per restricted scope",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 1000),
)

lead_transitions_total = Counter(
    "lead_transitions_total",
    "Lead status transitions by outcome",
    ["outcome"],
)

lifecycle_guard_denials_total = Counter(
    "lifecycle_guard_denials_total",
    "Final-status guard denials by operation",
    ["operation"],
)

hierarchy_rejections_total = Counter(
    "hierarchy_rejections_total",
    "Rejected reporting edge writes by reason",
    ["reason"],
)

reminders_scheduled_total = Counter(
    "reminders_scheduled_total",
    "Reminders scheduled by related type",
    ["related_type"],
)

reminder_schedule_failures_total = Counter(
    "reminder_schedule_failures_total",
    "Reminder scheduling failures by related type",
    ["related_type"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Activity log writes that failed and were dropped",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_resolution(kind: str, grant_count: int = 0) -> None:
    scope_resolutions_total.labels(kind=kind).inc()
    if grant_count > 0:
        scope_grants_count.observe(grant_count)


def observe_lead_transition(outcome: str) -> None:
    lead_transitions_total.labels(outcome=outcome).inc()


def observe_guard_denial(operation: str) -> None:
    lifecycle_guard_denials_total.labels(operation=operation).inc()


def observe_hierarchy_rejection(reason: str) -> None:
    hierarchy_rejections_total.labels(reason=reason).inc()


def observe_reminders_scheduled(related_type: str, count: int = 1) -> None:
    if count > 0:
        reminders_scheduled_total.labels(related_type=related_type).inc(count)


def observe_reminder_schedule_failure(related_type: str) -> None:
    reminder_schedule_failures_total.labels(related_type=related_type).inc()


def observe_audit_write_failure() -> None:
    audit_write_failures_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
