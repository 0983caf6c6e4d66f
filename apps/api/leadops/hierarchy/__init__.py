from leadops.hierarchy.models import HierarchyRecord, ReportingEdge
from leadops.hierarchy.resolver import AccessScopeResolver, scope_resolver
from leadops.hierarchy.service import HierarchyStore, hierarchy_store

__all__ = [
    "AccessScopeResolver",
    "HierarchyRecord",
    "HierarchyStore",
    "ReportingEdge",
    "hierarchy_store",
    "scope_resolver",
]
