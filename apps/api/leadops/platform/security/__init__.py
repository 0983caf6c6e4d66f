from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import (
    ConflictError,
    CycleError,
    DomainError,
    HierarchyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from leadops.platform.security.repository import BaseRepository
from leadops.platform.security.rls import ScopeGrant, ScopePredicate
from leadops.platform.security.seniority import (
    CachedSeniorityLookup,
    LevelSeniorityLookup,
    SeniorityLookup,
    get_seniority_lookup,
    is_senior_most,
    require_permission,
    set_seniority_lookup,
)

__all__ = [
    "AuthContext",
    "BaseRepository",
    "CachedSeniorityLookup",
    "ConflictError",
    "CycleError",
    "DomainError",
    "HierarchyError",
    "LevelSeniorityLookup",
    "NotFoundError",
    "PermissionDeniedError",
    "ScopeGrant",
    "ScopePredicate",
    "SeniorityLookup",
    "ValidationError",
    "get_seniority_lookup",
    "is_senior_most",
    "require_permission",
    "set_seniority_lookup",
]
