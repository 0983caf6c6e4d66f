from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base error raised by services and rendered by routers as an error envelope."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(DomainError):
    code = "validation_failed"
    status_code = 422


class ConflictError(DomainError):
    code = "conflict"
    status_code = 409


class PermissionDeniedError(DomainError):
    code = "permission_denied"
    status_code = 403


class CycleError(DomainError):
    """Raised when a reporting edge would make a principal its own ancestor."""

    code = "hierarchy_cycle"
    status_code = 422


class HierarchyError(DomainError):
    code = "hierarchy_invalid"
    status_code = 422


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404
