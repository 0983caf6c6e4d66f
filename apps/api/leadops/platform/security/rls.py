from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, false, or_
from sqlalchemy.sql import Select


@dataclass(frozen=True, slots=True)
class ScopeGrant:
    """Visibility of records owned by ``owner_id``; ``project_id=None`` means any project."""

    owner_id: uuid.UUID
    project_id: uuid.UUID | None = None

    def matches(self, owner_id: uuid.UUID | None, project_id: uuid.UUID | None) -> bool:
        if owner_id != self.owner_id:
            return False
        return self.project_id is None or self.project_id == project_id


@dataclass(frozen=True, slots=True)
class ScopePredicate:
    unrestricted: bool = False
    grants: frozenset[ScopeGrant] = field(default_factory=frozenset)

    @classmethod
    def everything(cls) -> ScopePredicate:
        return cls(unrestricted=True)

    @classmethod
    def of(cls, grants: set[ScopeGrant] | frozenset[ScopeGrant]) -> ScopePredicate:
        return cls(unrestricted=False, grants=frozenset(_collapse(grants)))

    def allows(self, owner_id: uuid.UUID | None, project_id: uuid.UUID | None = None) -> bool:
        if self.unrestricted:
            return True
        return any(grant.matches(owner_id, project_id) for grant in self.grants)

    def owner_ids(self) -> set[uuid.UUID]:
        return {grant.owner_id for grant in self.grants}

    def apply(self, query: Select[Any], owner_column: Any, project_column: Any | None = None) -> Select[Any]:
        """Narrow ``query`` to rows whose (owner, project) pair satisfies any grant."""

        if self.unrestricted:
            return query
        if not self.grants:
            return query.where(false())

        open_owners = sorted({grant.owner_id for grant in self.grants if grant.project_id is None}, key=str)
        clauses = []
        if open_owners:
            clauses.append(owner_column.in_(open_owners))
        for grant in sorted(self.grants, key=lambda item: (str(item.owner_id), str(item.project_id))):
            if grant.project_id is None:
                continue
            if project_column is None:
                # Records without a project dimension only honour owner-wide grants.
                continue
            clauses.append(and_(owner_column == grant.owner_id, project_column == grant.project_id))

        if not clauses:
            return query.where(false())
        return query.where(or_(*clauses))


def _collapse(grants: set[ScopeGrant] | frozenset[ScopeGrant]) -> set[ScopeGrant]:
    open_owners = {grant.owner_id for grant in grants if grant.project_id is None}
    return {grant for grant in grants if grant.project_id is None or grant.owner_id not in open_owners}
