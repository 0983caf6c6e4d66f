from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.sql import Select

from leadops.platform.security.context import AuthContext
from leadops.platform.security.rls import ScopePredicate


class BaseRepository:
    """Binds a model's owner/project columns to the scope predicate produced by the resolver."""

    resource = ""
    model: Any = None
    owner_attr = "owner_id"
    project_attr: str | None = "project_id"

    def apply_scope_query(self, query: Select[Any], scope: ScopePredicate) -> Select[Any]:
        owner_column = getattr(self.model, self.owner_attr)
        project_column = getattr(self.model, self.project_attr) if self.project_attr else None
        return scope.apply(query, owner_column, project_column)

    def can_view(self, record: Any, scope: ScopePredicate) -> bool:
        owner_id: uuid.UUID | None = getattr(record, self.owner_attr)
        project_id: uuid.UUID | None = getattr(record, self.project_attr) if self.project_attr else None
        return scope.allows(owner_id, project_id)

    def scope_for(self, session: Any, ctx: AuthContext, project_filter: uuid.UUID | None = None) -> ScopePredicate:
        from leadops.hierarchy.resolver import scope_resolver

        return scope_resolver.resolve_scope(session, ctx, project_filter=project_filter)
