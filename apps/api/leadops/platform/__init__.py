from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import DomainError
from leadops.platform.security.repository import BaseRepository
from leadops.platform.security.rls import ScopeGrant, ScopePredicate
from leadops.platform.security.seniority import SeniorityLookup, get_seniority_lookup, set_seniority_lookup

__all__ = [
    "AuthContext",
    "DomainError",
    "BaseRepository",
    "ScopeGrant",
    "ScopePredicate",
    "SeniorityLookup",
    "get_seniority_lookup",
    "set_seniority_lookup",
]
