from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadops.metrics import observe_http_request, resolve_http_path_label
from leadops.middleware.request_context import get_request_context


logger = logging.getLogger("leadops.request")

# Liveness and scrape traffic stays out of the INFO stream.
PROBE_PATHS = frozenset({"/health", "/metrics"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, 500, started, failed=True)
            raise
        self._record(request, response.status_code, started)
        return response

    @staticmethod
    def _record(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        # The route template is only known once routing has run.
        path = resolve_http_path_label(request)
        observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)

        context = get_request_context(request)
        extra = {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "project_id": str(context.project_id) if context is not None and context.project_id else None,
        }
        if failed:
            logger.error("http.error", exc_info=True, extra=extra)
        elif path in PROBE_PATHS:
            logger.debug("http.request", extra=extra)
        else:
            logger.info("http.request", extra=extra)
