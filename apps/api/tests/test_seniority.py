from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops import models  # noqa: F401
from leadops.core.config import get_settings
from leadops.core.database import Base
from leadops.platform.security.context import AuthContext
from leadops.platform.security.errors import PermissionDeniedError
from leadops.platform.security.seniority import (
    CachedSeniorityLookup,
    LevelSeniorityLookup,
    build_default_seniority_lookup,
    get_seniority_lookup,
    require_permission,
    set_seniority_lookup,
)
from leadops.principals.schemas import PrincipalCreate, PrincipalUpdate
from leadops.principals.service import PrincipalService


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_lookup() -> Generator[None, None, None]:
    get_settings.cache_clear()
    set_seniority_lookup(None)
    yield
    set_seniority_lookup(None)
    get_settings.cache_clear()


class CountingLookup:
    def __init__(self) -> None:
        self.calls = 0
        self.inner = LevelSeniorityLookup(senior_most_level=1, senior_most_roles=["superadmin"])

    def is_senior_most(self, principal_id: uuid.UUID, level: int, role: str) -> bool:
        self.calls += 1
        return self.inner.is_senior_most(principal_id, level, role)

    def invalidate(self, principal_id: uuid.UUID | None = None) -> None:
        return None


def test_level_and_role_rules() -> None:
    lookup = LevelSeniorityLookup(senior_most_level=1, senior_most_roles=["SuperAdmin"])
    principal_id = uuid.uuid4()

    assert lookup.is_senior_most(principal_id, 1, "sales")
    assert lookup.is_senior_most(principal_id, 7, "superadmin")
    assert not lookup.is_senior_most(principal_id, 2, "sales")


def test_cached_lookup_recomputes_when_level_or_role_changes() -> None:
    counting = CountingLookup()
    lookup = CachedSeniorityLookup(counting)
    principal_id = uuid.uuid4()

    assert lookup.is_senior_most(principal_id, 1, "superadmin")
    assert lookup.is_senior_most(principal_id, 1, "superadmin")
    assert counting.calls == 1

    # Demoted elsewhere: no invalidate reaches this cache.
    assert not lookup.is_senior_most(principal_id, 5, "agent")
    assert counting.calls == 2
    assert not lookup.is_senior_most(principal_id, 5, "agent")
    assert counting.calls == 2

    assert lookup.is_senior_most(principal_id, 5, "superadmin")
    assert counting.calls == 3

    lookup.invalidate(principal_id)
    assert lookup.is_senior_most(principal_id, 5, "superadmin")
    assert counting.calls == 4


def test_default_lookup_follows_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SENIOR_MOST_LEVEL", "2")
    monkeypatch.setenv("SENIORITY_CACHE_ENABLED", "false")
    get_settings.cache_clear()

    lookup = build_default_seniority_lookup()
    assert isinstance(lookup, LevelSeniorityLookup)
    assert lookup.is_senior_most(uuid.uuid4(), 2, "sales")

    set_seniority_lookup(None)
    assert isinstance(get_seniority_lookup(), LevelSeniorityLookup)


def test_require_permission_bypassed_by_senior_most() -> None:
    set_seniority_lookup(LevelSeniorityLookup())
    agent = AuthContext(principal_id=uuid.uuid4(), role="sales", level=3, permissions=["leads.read"])
    root = AuthContext(principal_id=uuid.uuid4(), role="superadmin", level=1)

    require_permission(agent, "leads.read")
    require_permission(root, "statuses.manage")
    with pytest.raises(PermissionDeniedError) as exc_info:
        require_permission(agent, "statuses.manage")
    assert exc_info.value.details == {"permission": "statuses.manage"}


def test_level_change_invalidates_cached_decision(db_session: Session) -> None:
    lookup = CachedSeniorityLookup(LevelSeniorityLookup())
    set_seniority_lookup(lookup)
    service = PrincipalService()

    principal = service.create_principal(
        db_session,
        PrincipalCreate(name="Head", email="Head@Example.com", level=1),
    )
    assert principal.email == "head@example.com"
    assert lookup.is_senior_most(principal.id, principal.level, principal.role)

    demoted = service.update_principal(db_session, principal.id, PrincipalUpdate(level=3))
    assert not lookup.is_senior_most(demoted.id, demoted.level, demoted.role)
    assert service.find_senior_most(db_session) is None
