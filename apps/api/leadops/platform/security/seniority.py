from __future__ import annotations

import uuid
from collections.abc import Iterable
from threading import Lock
from typing import Protocol

from leadops.platform.security.context import AuthContext


class SeniorityLookup(Protocol):
    """Answers one question: does this principal bypass hierarchy scoping and final-status guards."""

    def is_senior_most(self, principal_id: uuid.UUID, level: int, role: str) -> bool:
        ...

    def invalidate(self, principal_id: uuid.UUID | None = None) -> None:
        ...


class LevelSeniorityLookup:
    """Senior-most when the level is at or above the top tier, or the role is a root role."""

    def __init__(self, senior_most_level: int = 1, senior_most_roles: Iterable[str] = ("superadmin",)) -> None:
        self.senior_most_level = senior_most_level
        self._roles = {role.lower() for role in senior_most_roles}

    def is_senior_most(self, principal_id: uuid.UUID, level: int, role: str) -> bool:
        if role and role.lower() in self._roles:
            return True
        return level <= self.senior_most_level

    def invalidate(self, principal_id: uuid.UUID | None = None) -> None:
        return None


class CachedSeniorityLookup:
    """Memoizes another lookup per principal; an entry is reused only for the level and role it was computed from."""

    def __init__(self, inner: SeniorityLookup) -> None:
        self._inner = inner
        self._lock = Lock()
        self._cache: dict[uuid.UUID, tuple[int, str, bool]] = {}

    def is_senior_most(self, principal_id: uuid.UUID, level: int, role: str) -> bool:
        with self._lock:
            cached = self._cache.get(principal_id)
        if cached is not None and cached[:2] == (level, role):
            return cached[2]

        decision = self._inner.is_senior_most(principal_id, level, role)
        with self._lock:
            self._cache[principal_id] = (level, role, decision)
        return decision

    def invalidate(self, principal_id: uuid.UUID | None = None) -> None:
        with self._lock:
            if principal_id is None:
                self._cache.clear()
            else:
                self._cache.pop(principal_id, None)
        self._inner.invalidate(principal_id)


_SENIORITY_LOOKUP: SeniorityLookup | None = None
_SENIORITY_LOCK = Lock()


def build_default_seniority_lookup() -> SeniorityLookup:
    from leadops.core.config import get_settings

    settings = get_settings()
    lookup: SeniorityLookup = LevelSeniorityLookup(settings.senior_most_level, settings.senior_most_roles)
    if settings.seniority_cache_enabled:
        lookup = CachedSeniorityLookup(lookup)
    return lookup


def set_seniority_lookup(lookup: SeniorityLookup | None) -> None:
    """Set the active seniority lookup; ``None`` restores the settings-derived default on next use."""

    global _SENIORITY_LOOKUP
    with _SENIORITY_LOCK:
        _SENIORITY_LOOKUP = lookup


def get_seniority_lookup() -> SeniorityLookup:
    global _SENIORITY_LOOKUP
    with _SENIORITY_LOCK:
        if _SENIORITY_LOOKUP is None:
            _SENIORITY_LOOKUP = build_default_seniority_lookup()
        return _SENIORITY_LOOKUP


def is_senior_most(ctx: AuthContext, lookup: SeniorityLookup | None = None) -> bool:
    active = lookup or get_seniority_lookup()
    return active.is_senior_most(ctx.principal_id, ctx.level, ctx.role)


def require_permission(ctx: AuthContext, permission: str) -> None:
    from leadops.platform.security.errors import PermissionDeniedError

    if is_senior_most(ctx):
        return
    if permission not in ctx.permissions:
        raise PermissionDeniedError(f"Missing permission: {permission}", details={"permission": permission})
