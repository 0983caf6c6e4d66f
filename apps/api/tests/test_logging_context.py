from __future__ import annotations

import json
import logging
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
from leadops.logging import REDACTED, JsonLogFormatter, redact_contacts
from leadops.main import app
from leadops.middleware.rate_limit import reset_rate_limiter
from leadops.platform.security.seniority import LevelSeniorityLookup, set_seniority_lookup
from leadops.principals.models import Principal
from leadops.statuses.models import LeadStatus


AGENT_PERMISSIONS = ["leads.create", "leads.read", "leads.update", "leads.change_status"]


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
def statuses(db_session: Session) -> dict[str, uuid.UUID]:
    new = LeadStatus(name="New", name_key="new", fields=[], is_default=True)
    closed = LeadStatus(name="Closed", name_key="closed", fields=[], is_final=True)
    db_session.add_all([new, closed])
    db_session.commit()
    return {"new": new.id, "closed": closed.id}


@pytest.fixture()
def client(db_session: Session, statuses: dict[str, uuid.UUID], monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    agent = Principal(name="Agent", email="agent@example.com", level=3)
    db_session.add(agent)
    db_session.commit()
    agent_id = agent.id

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(agent_id), roles=AGENT_PERMISSIONS)

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(app.state, "session_factory", sessionmaker(bind=db_session.get_bind(), autocommit=False, autoflush=False))
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "leadops.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_final_status_guard_is_logged_with_lead_context(
    client: TestClient,
    statuses: dict[str, uuid.UUID],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    lead = client.post("/api/leads", json={"source": "Walk-in"}).json()
    closed = client.post(f"/api/leads/{lead['id']}/status", json={"status_id": str(statuses["closed"])})
    assert closed.status_code == 200

    reopen = client.post(
        f"/api/leads/{lead['id']}/status",
        json={"status_id": str(statuses["new"])},
        headers={"X-Correlation-Id": "guard-corr-1"},
    )
    assert reopen.status_code == 403

    transitions = [record for record in caplog.records if record.name == "leadops.leads" and record.getMessage() == "lead_status_changed"]
    assert any(getattr(record, "lead_id", None) == lead["id"] for record in transitions)

    guards = [record for record in caplog.records if record.name == "leadops.leads" and record.getMessage() == "lead_final_status_guard"]
    assert guards
    assert any(
        getattr(record, "lead_id", None) == lead["id"]
        and getattr(record, "status_id", None) == str(statuses["closed"])
        and getattr(record, "operation", None) == "transition"
        and getattr(record, "correlation_id", None) == "guard-corr-1"
        for record in guards
    )


def test_json_formatter_keeps_structured_fields_and_redacts_contacts() -> None:
    record = logging.makeLogRecord(
        {
            "name": "leadops.leads",
            "levelno": logging.WARNING,
            "levelname": "WARNING",
            "msg": "reminder for %s failed",
            "args": ("buyer@example.com",),
            "lead_id": "lead-1",
            "payload": {"phone": "+91 98765 43210"},
            "error": "could not reach +91 98765 43210 or buyer@example.com",
            "correlation_id": "fmt-corr-1",
        }
    )

    document = json.loads(JsonLogFormatter().format(record))

    assert document["logger"] == "leadops.leads"
    assert document["msg"] == f"reminder for {REDACTED} failed"
    assert document["correlation_id"] == "fmt-corr-1"
    assert document["fields"] == {"lead_id": "lead-1", "error": f"could not reach {REDACTED} or {REDACTED}"}


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("call 98765-43210 today", f"call {REDACTED} today"),
        ("lead 3f2a6c1e-9b7d-4c1a-8e2f-0a1b2c3d4e5f moved", "lead 3f2a6c1e-9b7d-4c1a-8e2f-0a1b2c3d4e5f moved"),
        ("visit at 2026-11-02T10:00:00Z", "visit at 2026-11-02T10:00:00Z"),
    ],
)
def test_redact_contacts(text: str, expected: str) -> None:
    assert redact_contacts(text) == expected
