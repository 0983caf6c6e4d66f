from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadops.hierarchy.models import ReportingEdge
from leadops.hierarchy.service import path_segment
from leadops.metrics import observe_scope_resolution
from leadops.platform.security.context import AuthContext
from leadops.platform.security.rls import ScopeGrant, ScopePredicate
from leadops.platform.security.seniority import SeniorityLookup, get_seniority_lookup


logger = logging.getLogger("leadops.hierarchy.scope")


class AccessScopeResolver:
    """Turns a principal (and optional project filter) into the owner/project pairs it may see."""

    CACHE_PREFIX = "scope:"

    def __init__(self, seniority: SeniorityLookup | None = None) -> None:
        self._seniority = seniority

    def resolve_scope(
        self,
        session: Session,
        principal: AuthContext,
        project_filter: uuid.UUID | None = None,
    ) -> ScopePredicate:
        cache_key = f"{self.CACHE_PREFIX}{project_filter}"
        cached = principal._cache.get(cache_key)
        if isinstance(cached, ScopePredicate):
            return cached

        lookup = self._seniority or get_seniority_lookup()
        if lookup.is_senior_most(principal.principal_id, principal.level, principal.role):
            observe_scope_resolution("unrestricted")
            predicate = ScopePredicate.everything()
            principal._cache[cache_key] = predicate
            return predicate

        edges = session.scalars(
            select(ReportingEdge).where(ReportingEdge.path.contains(path_segment(principal.principal_id)))
        ).all()

        grants: set[ScopeGrant] = set()
        for edge in edges:
            if edge.subordinate_id == principal.principal_id:
                continue
            if edge.context == "project":
                if project_filter is not None and edge.project_id != project_filter:
                    continue
                grants.add(ScopeGrant(owner_id=edge.subordinate_id, project_id=edge.project_id))
            else:
                # global/superadmin/custom edges are not narrowed by the edge's project.
                grants.add(ScopeGrant(owner_id=edge.subordinate_id, project_id=project_filter))
        grants.add(ScopeGrant(owner_id=principal.principal_id, project_id=project_filter))

        predicate = ScopePredicate.of(grants)
        principal._cache[cache_key] = predicate
        observe_scope_resolution("restricted", len(predicate.grants))
        logger.debug(
            "scope_resolved",
            extra={"actor_id": principal.actor_id, "project_id": str(project_filter) if project_filter else None, "count": len(predicate.grants)},
        )
        return predicate


scope_resolver = AccessScopeResolver()
