from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any

from leadops.context import get_correlation_id, get_principal_id


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())

# Structured fields copied from ``extra=``; anything else (payloads, DTOs) stays out of the log stream.
STRUCTURED_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "event_name",
        "lead_id",
        "status_id",
        "subordinate_id",
        "supervisor_id",
        "reason",
        "resource",
        "actor_id",
        "owner_id",
        "project_id",
        "operation",
        "outcome",
        "count",
        "error",
    }
)

# Lead payloads hold customer contact details; they can leak in through error strings.
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE_RE = re.compile(r"(?<![\w-])\+?\d[\d\s().-]{7,}\d(?![\w-])")
REDACTED = "[redacted]"
MAX_TEXT_LENGTH = 500


def redact_contacts(text: str) -> str:
    return _PHONE_RE.sub(REDACTED, _EMAIL_RE.sub(REDACTED, text))


def _bind_request_context(record: logging.LogRecord) -> None:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if not getattr(record, "principal_id", None):
        record.principal_id = get_principal_id()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _bind_request_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    _bind_request_context(record)
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in STRUCTURED_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = redact_contacts(fields["error"])[:MAX_TEXT_LENGTH]
        if record.exc_info:
            fields["exception"] = redact_contacts(self.formatException(record.exc_info))

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_contacts(record.getMessage()),
            "correlation_id": getattr(record, "correlation_id", None),
            "principal_id": getattr(record, "principal_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_leadops_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._leadops_configured = True  # type: ignore[attr-defined]
