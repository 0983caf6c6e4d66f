from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from leadops.platform.security.errors import ValidationError
from leadops.statuses.schemas import FieldSpec


SCHEDULING_TYPES = frozenset({"date", "datetime"})

_email_adapter = TypeAdapter(EmailStr)
_PHONE_RE = re.compile(r"^\+?[0-9][0-9\s\-().]{5,}$")


def is_empty(value: Any) -> bool:
    """Missing, ``None``, blank strings and empty collections; ``0`` and ``False`` are values."""

    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        pass
    try:
        parsed = date.fromisoformat(raw)
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day)


def _check_text(spec: FieldSpec, value: Any) -> str | None:
    return None if isinstance(value, str) else "must be a string"


def _check_number(spec: FieldSpec, value: Any) -> str | None:
    if isinstance(value, bool):
        return "must be a number"
    if isinstance(value, (int, float)):
        return None
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return "must be a number"
        return None
    return "must be a number"


def _check_date(spec: FieldSpec, value: Any) -> str | None:
    return None if parse_datetime(value) is not None else "must be an ISO-8601 date"


def _check_select(spec: FieldSpec, value: Any) -> str | None:
    options = spec.options or []
    if isinstance(value, list):
        unknown = [item for item in value if item not in options]
        return f"unknown options: {', '.join(map(str, unknown))}" if unknown else None
    return None if value in options else f"must be one of: {', '.join(options)}"


def _check_checkbox(spec: FieldSpec, value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return None
    return "must be a boolean"


def _check_phone(spec: FieldSpec, value: Any) -> str | None:
    return None if isinstance(value, str) and _PHONE_RE.match(value.strip()) else "must be a phone number"


def _check_email(spec: FieldSpec, value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be an email address"
    try:
        _email_adapter.validate_python(value.strip())
    except PydanticValidationError:
        return "must be an email address"
    return None


_VISITORS: dict[str, Callable[[FieldSpec, Any], str | None]] = {
    "text": _check_text,
    "textarea": _check_text,
    "number": _check_number,
    "date": _check_date,
    "datetime": _check_date,
    "select": _check_select,
    "checkbox": _check_checkbox,
    "phone": _check_phone,
    "email": _check_email,
}


def validate_field_specs(specs: Iterable[FieldSpec]) -> list[FieldSpec]:
    """Schema-level checks for a status definition's field list."""

    seen: set[str] = set()
    result: list[FieldSpec] = []
    for spec in specs:
        key = spec.name.strip()
        if key in seen:
            raise ValidationError(f"duplicate field name: {key}", details={"field": key})
        seen.add(key)
        if spec.type == "select" and not spec.options:
            raise ValidationError(f"select field requires options: {key}", details={"field": key})
        result.append(spec.model_copy(update={"name": key}))
    return result


def validate_payload(specs: Iterable[FieldSpec], payload: Mapping[str, Any]) -> None:
    """Check a transition payload against the target status's fields.

    Required fields must be non-empty; supplied values must match their declared
    type. Keys without a FieldSpec pass through untouched.
    """

    missing: list[str] = []
    invalid: dict[str, str] = {}
    for spec in specs:
        value = payload.get(spec.name)
        if is_empty(value):
            if spec.required:
                missing.append(spec.name)
            continue
        problem = _VISITORS[spec.type](spec, value)
        if problem is not None:
            invalid[spec.name] = problem

    if missing:
        raise ValidationError(
            f"required field missing: {', '.join(missing)}",
            details={"field": missing[0], "missing": missing},
        )
    if invalid:
        first = next(iter(invalid))
        raise ValidationError(f"invalid field {first}: {invalid[first]}", details={"field": first, "invalid": invalid})


def extract_schedule(specs: Iterable[FieldSpec], payload: Mapping[str, Any]) -> list[dict[str, str]]:
    """Date/datetime values of ``payload`` that a follow-up could be scheduled from."""

    follow_ups: list[dict[str, str]] = []
    for spec in specs:
        if spec.type not in SCHEDULING_TYPES:
            continue
        parsed = parse_datetime(payload.get(spec.name))
        if parsed is None:
            continue
        follow_ups.append({"field": spec.name, "type": spec.type, "at": parsed.isoformat()})
    return follow_ups
