from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops import events
from leadops.core.auth import AuthUser, get_current_user
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.hierarchy.schemas import ReportingEdgeInput
from leadops.hierarchy.service import hierarchy_store
from leadops.leads.models import Lead
from leadops.main import app
from leadops.middleware.rate_limit import reset_rate_limiter
from leadops.platform.security.context import AuthContext
from leadops.platform.security.seniority import LevelSeniorityLookup, set_seniority_lookup
from leadops.principals.models import Principal
from leadops.reminders.models import Reminder


AGENT_PERMISSIONS = [
    "leads.create",
    "leads.read",
    "leads.update",
    "leads.change_status",
    "activities.read",
    "reminders.read",
    "reminders.write",
]
MANAGER_PERMISSIONS = AGENT_PERMISSIONS + ["leads.delete", "leads.transfer"]


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
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    set_seniority_lookup(LevelSeniorityLookup())
    yield
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    set_seniority_lookup(None)


@pytest.fixture()
def people(db_session: Session) -> dict[str, uuid.UUID]:
    rows = {
        "root": Principal(name="Root", email="root@example.com", role="superadmin", level=1),
        "manager": Principal(name="Manager", email="manager@example.com", level=2),
        "agent": Principal(name="Agent", email="agent@example.com", level=3),
        "outsider": Principal(name="Outsider", email="outsider@example.com", level=3),
    }
    db_session.add_all(rows.values())
    db_session.commit()

    admin = AuthContext(principal_id=rows["root"].id, role="superadmin", level=1)
    hierarchy_store.upsert_edges(db_session, admin, rows["manager"].id, [ReportingEdgeInput(supervisor_id=rows["root"].id, context="global")])
    hierarchy_store.upsert_edges(db_session, admin, rows["agent"].id, [ReportingEdgeInput(supervisor_id=rows["manager"].id, context="global")])
    hierarchy_store.upsert_edges(db_session, admin, rows["outsider"].id, [ReportingEdgeInput(supervisor_id=rows["root"].id, context="global")])
    return {key: row.id for key, row in rows.items()}


@pytest.fixture()
def client(
    db_session: Session,
    people: dict[str, uuid.UUID],
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    roles = {
        "root": [],
        "manager": MANAGER_PERMISSIONS,
        "agent": AGENT_PERMISSIONS,
        "outsider": AGENT_PERMISSIONS,
    }
    state = {"current": "agent"}

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(people[state["current"]]), roles=roles[state["current"]])

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(app.state, "session_factory", sessionmaker(bind=db_session.get_bind(), autocommit=False, autoflush=False))
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def statuses(client: tuple[TestClient, Callable[[str], None]]) -> dict[str, str]:
    test_client, set_actor = client
    set_actor("root")
    payloads = {
        "new": {"name": "New", "is_default": True},
        "contacted": {"name": "Contacted", "fields": [{"name": "note", "type": "textarea", "required": True}]},
        "site_visit": {
            "name": "Site Visit",
            "fields": [
                {"name": "visit_at", "type": "datetime", "required": True},
                {"name": "visitors", "type": "number"},
            ],
        },
        "closed": {"name": "Closed", "is_final": True},
    }
    created = {}
    for key, body in payloads.items():
        response = test_client.post("/api/lead-statuses", json=body)
        assert response.status_code == 201, response.text
        created[key] = response.json()["id"]
    set_actor("agent")
    return created


def _create_lead(test_client: TestClient, **overrides: object) -> dict:
    body = {"source": "Website", "payload": {"name": "Ravi Kumar", "phone": "+91 98450 12345"}}
    body.update(overrides)
    response = test_client.post("/api/leads", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_lead_uses_default_status(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
    people: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    lead = _create_lead(test_client)

    assert lead["status_id"] == statuses["new"]
    assert lead["owner_id"] == str(people["agent"])
    assert lead["row_version"] == 1

    rejected = test_client.post("/api/leads", json={"status_id": statuses["contacted"]})
    assert rejected.status_code == 422
    assert rejected.json()["code"] == "validation_failed"
    assert rejected.json()["details"]["field"] == "status_id"


def test_list_and_read_are_scoped_by_hierarchy(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
) -> None:
    test_client, set_actor = client
    lead = _create_lead(test_client)

    set_actor("manager")
    assert [item["id"] for item in test_client.get("/api/leads").json()] == [lead["id"]]

    set_actor("outsider")
    assert test_client.get("/api/leads").json() == []
    hidden = test_client.get(f"/api/leads/{lead['id']}")
    assert hidden.status_code == 404
    body = hidden.json()
    assert body["code"] == "not_found"
    assert body["details"] == {"lead_id": lead["id"]}
    assert body["correlation_id"]


def test_transition_records_history_and_schedules_follow_ups(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
    db_session: Session,
) -> None:
    test_client, _ = client
    lead = _create_lead(test_client)
    visit_at = (datetime.now(timezone.utc) + timedelta(days=3)).replace(microsecond=0)

    response = test_client.post(
        f"/api/leads/{lead['id']}/status",
        json={
            "status_id": statuses["site_visit"],
            "payload": {"visit_at": visit_at.isoformat(), "visitors": 2},
            "row_version": lead["row_version"],
        },
    )
    assert response.status_code == 200, response.text
    assert response.json()["status_id"] == statuses["site_visit"]
    assert response.json()["row_version"] == 2

    history = test_client.get(f"/api/leads/{lead['id']}/history").json()
    assert len(history) == 1
    assert history[0]["previous_status_id"] == statuses["new"]
    assert history[0]["previous_payload"] == lead["payload"]

    changed = [item for item in events.published_events if item["event_type"] == "lead.status_changed"]
    assert changed[-1]["payload"]["follow_ups"][0]["field"] == "visit_at"

    reminders = test_client.get("/api/reminders", params={"related_type": "lead", "related_id": lead["id"]}).json()
    assert len(reminders) == 2
    assert all(item["title"].startswith("Lead Follow-up") for item in reminders)
    assert db_session.scalar(select(Reminder).where(Reminder.related_id == uuid.UUID(lead["id"]))) is not None

    follow_ups = test_client.get("/api/follow-ups").json()
    assert {item["id"] for item in follow_ups["tomorrow"] + follow_ups["upcoming"]} == {item["id"] for item in reminders}


def test_transition_validation_and_conflict_errors(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
) -> None:
    test_client, _ = client
    lead = _create_lead(test_client)

    missing = test_client.post(f"/api/leads/{lead['id']}/status", json={"status_id": statuses["contacted"], "payload": {}})
    assert missing.status_code == 422
    assert missing.json()["details"]["field"] == "note"

    unknown = test_client.post(f"/api/leads/{lead['id']}/status", json={"status_id": str(uuid.uuid4())})
    assert unknown.status_code == 404

    stale = test_client.post(
        f"/api/leads/{lead['id']}/status",
        json={"status_id": statuses["contacted"], "payload": {"note": "called"}, "row_version": 7},
    )
    assert stale.status_code == 409
    assert stale.json()["code"] == "conflict"

    assert test_client.get(f"/api/leads/{lead['id']}/history").json() == []
    assert test_client.get(f"/api/leads/{lead['id']}").json()["status_id"] == statuses["new"]


def test_final_status_guard_and_senior_override(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
) -> None:
    test_client, set_actor = client
    lead = _create_lead(test_client)
    closed = test_client.post(f"/api/leads/{lead['id']}/status", json={"status_id": statuses["closed"]})
    assert closed.status_code == 200

    reopen = test_client.post(f"/api/leads/{lead['id']}/status", json={"status_id": statuses["new"]})
    assert reopen.status_code == 403
    assert reopen.json()["code"] == "permission_denied"

    edit = test_client.patch(f"/api/leads/{lead['id']}", json={"payload": {"name": "Someone else"}})
    assert edit.status_code == 403

    set_actor("manager")
    delete = test_client.delete(f"/api/leads/{lead['id']}")
    assert delete.status_code == 403

    set_actor("root")
    reopened = test_client.post(f"/api/leads/{lead['id']}/status", json={"status_id": statuses["new"]})
    assert reopened.status_code == 200
    assert len(test_client.get(f"/api/leads/{lead['id']}/history").json()) == 2


def test_missing_permission_is_rejected(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
) -> None:
    test_client, _ = client
    lead = _create_lead(test_client)

    response = test_client.delete(f"/api/leads/{lead['id']}")
    assert response.status_code == 403
    assert response.json()["details"] == {"permission": "leads.delete"}


def test_edit_and_delete_are_audited(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    lead = _create_lead(test_client)

    edited = test_client.patch(
        f"/api/leads/{lead['id']}",
        json={"source": "Referral", "payload": {"budget": "2Cr"}, "row_version": lead["row_version"]},
    )
    assert edited.status_code == 200
    assert edited.json()["payload"] == {**lead["payload"], "budget": "2Cr"}

    activities = test_client.get(f"/api/leads/{lead['id']}/activities").json()
    assert [item["action"] for item in activities] == ["created", "updated"]
    assert activities[-1]["details"]["after"]["source"] == "Referral"

    set_actor("manager")
    deleted = test_client.delete(f"/api/leads/{lead['id']}")
    assert deleted.status_code == 200
    assert db_session.get(Lead, uuid.UUID(lead["id"])) is None

    scoped = test_client.get("/api/activities", params={"action": "deleted"}).json()
    assert [item["lead_id"] for item in scoped] == [lead["id"]]


def test_bulk_transfer_moves_leads_between_owners(
    client: tuple[TestClient, Callable[[str], None]],
    statuses: dict[str, str],
    people: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    first = _create_lead(test_client)
    second = _create_lead(test_client)

    set_actor("manager")
    response = test_client.post(
        "/api/leads/bulk-transfer",
        json={
            "lead_ids": [first["id"], second["id"]],
            "from_owner_id": str(people["agent"]),
            "to_owner_id": str(people["manager"]),
        },
    )
    assert response.status_code == 200, response.text
    assert response.json()["transferred"] == 2

    owners = {item["owner_id"] for item in test_client.get("/api/leads").json()}
    assert owners == {str(people["manager"])}

    outside = test_client.post(
        "/api/leads/bulk-transfer",
        json={
            "lead_ids": [first["id"]],
            "from_owner_id": str(people["manager"]),
            "to_owner_id": str(people["outsider"]),
        },
    )
    assert outside.status_code == 403

    set_actor("agent")
    assert test_client.get(f"/api/leads/{first['id']}").status_code == 404
