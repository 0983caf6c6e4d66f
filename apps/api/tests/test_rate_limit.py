from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.core.auth import AuthUser, get_current_user
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.main import app
from leadops.middleware.rate_limit import reset_rate_limiter
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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    admin = Principal(name="Ops", email="ops@example.com", level=2)
    db_session.add(admin)
    db_session.commit()
    admin_id = admin.id

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(admin_id), roles=["statuses.manage"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_mutating_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/lead-statuses", json={"name": f"Stage {index}"}) for index in range(5)]

    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/lead-statuses", json={"name": "Readable"})
    assert create.status_code == 201

    responses = [client.get("/api/lead-statuses") for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)
    assert client.get(f"/api/lead-statuses/{uuid.uuid4()}").status_code == 404


def test_admin_routes_use_the_smaller_budget(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "100")
    monkeypatch.setenv("RATE_LIMIT_ADMIN_MUTATIONS_PER_MINUTE", "2")
    get_settings.cache_clear()
    reset_rate_limiter()

    statuses = [client.post("/api/lead-statuses", json={"name": f"Tier {index}"}) for index in range(3)]
    assert [response.status_code for response in statuses] == [201, 201, 429]
    assert statuses[-1].json()["details"] == {"route_group": "lead-statuses", "limit_per_minute": 2}

    lead = client.post("/api/leads", json={"source": "Portal"})
    assert lead.status_code != 429


def test_callers_without_token_are_keyed_by_forwarded_address(client: TestClient) -> None:
    first_office = {"X-Forwarded-For": "10.0.0.1, 172.16.0.1"}
    responses = [client.post("/api/lead-statuses", json={"name": f"Office {index}"}, headers=first_office) for index in range(4)]
    assert responses[-1].status_code == 429

    other_office = client.post("/api/lead-statuses", json={"name": "Branch"}, headers={"X-Forwarded-For": "10.0.0.2"})
    assert other_office.status_code == 201
