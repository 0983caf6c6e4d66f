from __future__ import annotations

import os
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from leadops.core.auth import AuthUser, get_current_user
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.main import app
from leadops.middleware.rate_limit import reset_rate_limiter
from leadops.otel import setup_inmemory_otel
from leadops.platform.security.seniority import LevelSeniorityLookup, set_seniority_lookup
from leadops.principals.models import Principal
from leadops.statuses.models import LeadStatus


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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("leadops-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def statuses(db_session: Session) -> dict[str, uuid.UUID]:
    new = LeadStatus(name="New", name_key="new", fields=[], is_default=True)
    visit = LeadStatus(
        name="Site Visit",
        name_key="site visit",
        fields=[{"name": "visit_at", "type": "datetime", "required": True}],
    )
    db_session.add_all([new, visit])
    db_session.commit()
    return {"new": new.id, "visit": visit.id}


@pytest.fixture()
def client(db_session: Session, statuses: dict[str, uuid.UUID], monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    agent = Principal(name="Agent", email="agent@example.com", level=3)
    db_session.add(agent)
    db_session.commit()
    agent_id = agent.id

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(agent_id), roles=["leads.create", "leads.read", "leads.change_status"])

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(app.state, "session_factory", sessionmaker(bind=db_session.get_bind(), autocommit=False, autoflush=False))
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/leads", json={"source": "Web"}, headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_transition_span_carries_lead_and_target(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    statuses: dict[str, uuid.UUID],
) -> None:
    lead = client.post("/api/leads", json={"source": "Web"}).json()

    rejected = client.post(f"/api/leads/{lead['id']}/status", json={"status_id": str(statuses["visit"])})
    assert rejected.status_code == 422
    applied = client.post(
        f"/api/leads/{lead['id']}/status",
        json={"status_id": str(statuses["visit"]), "payload": {"visit_at": "2026-11-02T10:00:00Z"}},
        headers={"X-Correlation-Id": "otel-transition-1"},
    )
    assert applied.status_code == 200

    transition_spans = [span for span in span_exporter.get_finished_spans() if span.name == "leads.transition"]
    assert len(transition_spans) == 2
    assert all(span.attributes.get("lead.id") == lead["id"] for span in transition_spans)
    assert all(span.attributes.get("lead.target_status_id") == str(statuses["visit"]) for span in transition_spans)
    assert [span.status.status_code for span in transition_spans] == [StatusCode.ERROR, StatusCode.UNSET]
    assert transition_spans[-1].attributes.get("correlation_id") == "otel-transition-1"
