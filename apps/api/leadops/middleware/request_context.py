from __future__ import annotations

import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadops.context import reset_correlation_id, reset_principal_id, set_correlation_id, set_principal_id
from leadops.core.auth import bearer_token, decode_subject


@dataclass
class RequestContext:
    correlation_id: str
    principal_id: str | None
    project_id: uuid.UUID | None


def _project_from_header(request: Request) -> uuid.UUID | None:
    raw = request.headers.get("x-project-id")
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id, token subject and project header for one request.

    The subject is read from the bearer token without loading the principal, so
    logs and spans carry it even when the request is later rejected.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        token = bearer_token(request)
        context = RequestContext(
            correlation_id=request.headers.get("x-correlation-id") or str(uuid.uuid4()),
            principal_id=decode_subject(token) if token else None,
            project_id=_project_from_header(request),
        )
        request.state.context = context
        request.state.correlation_id = context.correlation_id

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", context.correlation_id)
            if context.principal_id:
                span.set_attribute("enduser.id", context.principal_id)
            if context.project_id:
                span.set_attribute("leadops.project_id", str(context.project_id))

        correlation_token = set_correlation_id(context.correlation_id)
        principal_token = set_principal_id(context.principal_id)
        try:
            response = await call_next(request)
        finally:
            reset_principal_id(principal_token)
            reset_correlation_id(correlation_token)

        response.headers["x-correlation-id"] = context.correlation_id
        response.headers["x-request-id"] = context.correlation_id
        return response


def get_request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)
