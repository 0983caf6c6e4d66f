from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadops.core.config import Settings, get_settings
from leadops.middleware.request_context import get_request_context


# Route groups that reshape the hierarchy, the status schema or many leads at once.
ADMIN_ROUTE_GROUPS = frozenset({"principals", "hierarchy", "lead-statuses", "leads/bulk-transfer"})
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
WINDOW_SECONDS = 60


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class _TokenBucketLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def take(self, caller: str, route_group: str, capacity: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, WINDOW_SECONDS

        now = time.monotonic()
        refill_rate = capacity / float(WINDOW_SECONDS)
        with self._lock:
            bucket = self._buckets.setdefault((caller, route_group), _Bucket(tokens=float(capacity), refilled_at=now))
            bucket.tokens = min(float(capacity), bucket.tokens + max(0.0, now - bucket.refilled_at) * refill_rate)
            bucket.refilled_at = now
            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))
            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    """Token buckets per caller and route group for mutating ``/api`` requests.

    Admin route groups draw from a smaller budget that never exceeds the
    general one. Callers without a token are keyed by client address.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if (
            settings.rate_limit_disabled
            or not path.startswith("/api/")
            or request.method.upper() not in MUTATING_METHODS
        ):
            return await call_next(request)

        route_group = resolve_route_group(path)
        capacity = capacity_for(route_group, settings)
        allowed, retry_after = _limiter.take(_caller_key(request), route_group, capacity)
        if allowed:
            return await call_next(request)

        context = get_request_context(request)
        correlation_id = context.correlation_id if context is not None else None
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": {"route_group": route_group, "limit_per_minute": capacity},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        return response


def resolve_route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    if parts[1] == "leads" and parts[-1] == "bulk-transfer":
        return "leads/bulk-transfer"
    return parts[1]


def capacity_for(route_group: str, settings: Settings) -> int:
    if route_group in ADMIN_ROUTE_GROUPS:
        return min(settings.rate_limit_admin_mutations_per_minute, settings.rate_limit_mutations_per_minute)
    return settings.rate_limit_mutations_per_minute


def _caller_key(request: Request) -> str:
    context = get_request_context(request)
    if context is not None and context.principal_id:
        return f"principal:{context.principal_id}"
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def reset_rate_limiter() -> None:
    _limiter.clear()
