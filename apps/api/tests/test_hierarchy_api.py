from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.core.auth import AuthUser, get_current_user, issue_token
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.main import app
from leadops.middleware.rate_limit import reset_rate_limiter
from leadops.platform.security.seniority import LevelSeniorityLookup, set_seniority_lookup
from leadops.principals.models import Principal


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    set_seniority_lookup(LevelSeniorityLookup())
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    set_seniority_lookup(None)


@pytest.fixture()
def root_id(db_session: Session) -> uuid.UUID:
    root = Principal(name="Root", email="root@example.com", role="superadmin", level=1)
    db_session.add(root)
    db_session.commit()
    return root.id


@pytest.fixture()
def client(db_session: Session, root_id: uuid.UUID) -> Generator[tuple[TestClient, Callable[[uuid.UUID], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": root_id}

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(state["current"]), roles=["hierarchy.read"])

    def set_actor(principal_id: uuid.UUID) -> None:
        state["current"] = principal_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _create_principal(test_client: TestClient, name: str, level: int) -> str:
    response = test_client.post(
        "/api/principals",
        json={"name": name, "email": f"{name.lower()}@example.com", "level": level},
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _put_edges(test_client: TestClient, principal_id: str, edges: list[dict]) -> object:
    return test_client.put(f"/api/hierarchy/{principal_id}/edges", json={"edges": edges})


def test_principal_email_must_be_unique(client: tuple[TestClient, Callable[[uuid.UUID], None]]) -> None:
    test_client, _ = client
    _create_principal(test_client, "Asha", 2)

    duplicate = test_client.post("/api/principals", json={"name": "Asha 2", "email": "ASHA@example.com", "level": 3})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"


def test_scope_follows_reporting_edges(
    client: tuple[TestClient, Callable[[uuid.UUID], None]],
    root_id: uuid.UUID,
) -> None:
    test_client, set_actor = client
    project_id = str(uuid.uuid4())
    b = _create_principal(test_client, "B", 2)
    c = _create_principal(test_client, "C", 3)
    d = _create_principal(test_client, "D", 3)

    assert _put_edges(test_client, b, [{"supervisor_id": str(root_id), "context": "project", "project_id": project_id}]).status_code == 200
    placed = _put_edges(test_client, c, [{"supervisor_id": b, "context": "project", "project_id": project_id}])
    assert placed.status_code == 200
    assert placed.json()["edges"][0]["path"] == f"/{root_id}/{b}/"
    assert placed.json()["edges"][1]["context"] == "superadmin"
    assert _put_edges(test_client, d, [{"supervisor_id": str(root_id), "context": "project", "project_id": project_id}]).status_code == 200

    set_actor(uuid.UUID(b))
    scope = test_client.get("/api/scope", params={"project_id": project_id}).json()
    assert scope["unrestricted"] is False
    assert {grant["owner_id"] for grant in scope["grants"]} == {b, c}

    descendants = test_client.get(f"/api/hierarchy/{b}/descendants").json()
    assert [record["principal_id"] for record in descendants] == [c]

    set_actor(root_id)
    assert test_client.get("/api/scope").json()["unrestricted"] is True


def test_invalid_edges_return_error_envelope(
    client: tuple[TestClient, Callable[[uuid.UUID], None]],
    root_id: uuid.UUID,
) -> None:
    test_client, _ = client
    manager = _create_principal(test_client, "Manager", 2)
    agent = _create_principal(test_client, "Agent", 3)

    not_senior = _put_edges(test_client, manager, [{"supervisor_id": agent, "context": "global"}])
    assert not_senior.status_code == 422
    assert not_senior.json()["code"] == "hierarchy_invalid"
    assert not_senior.json()["details"]["supervisor_id"] == agent

    missing_project = _put_edges(test_client, agent, [{"supervisor_id": manager, "context": "project"}])
    assert missing_project.status_code == 422
    assert missing_project.json()["code"] == "validation_failed"
    assert missing_project.json()["details"]["field"] == "project_id"

    bad_context = _put_edges(test_client, agent, [{"supervisor_id": manager, "context": "regional"}])
    assert bad_context.status_code == 422

    unknown = _put_edges(test_client, str(uuid.uuid4()), [{"supervisor_id": str(root_id), "context": "global"}])
    assert unknown.status_code == 404


def test_level_change_can_surface_cycle(
    client: tuple[TestClient, Callable[[uuid.UUID], None]],
    root_id: uuid.UUID,
) -> None:
    test_client, _ = client
    manager = _create_principal(test_client, "Manager", 2)
    agent = _create_principal(test_client, "Agent", 3)
    assert _put_edges(test_client, manager, [{"supervisor_id": str(root_id), "context": "global"}]).status_code == 200
    assert _put_edges(test_client, agent, [{"supervisor_id": manager, "context": "global"}]).status_code == 200

    demoted = test_client.patch(f"/api/principals/{manager}", json={"level": 5})
    assert demoted.status_code == 200
    assert test_client.get(f"/api/hierarchy/{manager}").json()["level"] == 5

    cycle = _put_edges(test_client, manager, [{"supervisor_id": agent, "context": "global"}])
    assert cycle.status_code == 422
    assert cycle.json()["code"] == "hierarchy_cycle"


def test_remove_record_requires_manage_permission(
    client: tuple[TestClient, Callable[[uuid.UUID], None]],
    root_id: uuid.UUID,
) -> None:
    test_client, set_actor = client
    manager = _create_principal(test_client, "Manager", 2)
    assert _put_edges(test_client, manager, [{"supervisor_id": str(root_id), "context": "global"}]).status_code == 200

    set_actor(uuid.UUID(manager))
    assert test_client.get(f"/api/hierarchy/{manager}").status_code == 200
    assert test_client.delete(f"/api/hierarchy/{manager}").status_code == 403

    set_actor(root_id)
    assert test_client.delete(f"/api/hierarchy/{manager}").status_code == 200
    assert test_client.get(f"/api/hierarchy/{manager}").status_code == 404


def test_unknown_principal_token_is_unauthorized(db_session: Session, root_id: uuid.UUID) -> None:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            anonymous = test_client.get("/api/scope")
            assert anonymous.status_code == 401

            token = issue_token(str(root_id), [])
            authorized = test_client.get("/api/scope", headers={"Authorization": f"Bearer {token}"})
            assert authorized.status_code == 200
            assert authorized.json()["principal_id"] == str(root_id)
    finally:
        app.dependency_overrides.clear()
