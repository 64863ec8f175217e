import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.analytics_service import get_analytics_service
from app.services.department_service import get_department_service
from app.services.duplicate_linker import get_duplicate_linker
from app.services.escalation_engine import get_escalation_engine
from app.services.report_service import get_report_service
from app.services.status_workflow import get_status_workflow_service
from app.services.trust_score import get_trust_engine
from app.services.vote_service import get_vote_ledger
from app.stores import get_report_store
from tests.conftest import report_payload

CITIZEN = {"X-User-ID": "citizen-1"}
OTHER_CITIZEN = {"X-User-ID": "citizen-2", "X-User-Role": "citizen"}
STAFF = {"X-User-ID": "staff-1", "X-User-Role": "department_staff"}
ADMIN = {"X-User-ID": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def client(store, reports, ledger, workflow, linker, departments, trust, escalation, analytics):
    overrides = {
        get_report_store: lambda: store,
        get_report_service: lambda: reports,
        get_vote_ledger: lambda: ledger,
        get_status_workflow_service: lambda: workflow,
        get_duplicate_linker: lambda: linker,
        get_department_service: lambda: departments,
        get_trust_engine: lambda: trust,
        get_escalation_engine: lambda: escalation,
        get_analytics_service: lambda: analytics,
    }
    app.dependency_overrides.update(overrides)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, headers=CITIZEN, **overrides):
    response = client.post("/reports", json=report_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/health").json()["status"] == "healthy"
    db = client.get("/health/db").json()
    assert db["backend"] == "memory"
    assert db["connected"] is True


def test_submit_and_fetch_report(client):
    created = _create(client)
    assert created["status"] == "submitted"
    assert created["location"]["coordinates"] == [-122.4, 37.8]
    assert created["reporter_id"] == "citizen-1"

    fetched = client.get(f"/reports/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["report_number"] == created["report_number"]


def test_submit_requires_identity(client):
    response = client.post("/reports", json=report_payload())
    assert response.status_code == 403
    assert response.json()["error"] == "permission_denied"


def test_invalid_body_is_422(client):
    response = client.post("/reports", json=report_payload(longitude=500), headers=CITIZEN)
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_unknown_report_is_404(client):
    response = client.get("/reports/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"detail": "Report does-not-exist not found", "error": "not_found"}


def test_list_nearby_and_search(client):
    created = _create(client)
    _create(client, category="water_sewage", title="Leaking main", latitude=38.5)

    listed = client.get("/reports", params={"category": "roads_transport"}).json()
    assert [r["id"] for r in listed] == [created["id"]]

    nearby = client.get("/reports/nearby", params={"longitude": -122.4, "latitude": 37.8, "radius": 1000}).json()
    assert [r["id"] for r in nearby] == [created["id"]]
    assert nearby[0]["distance_meters"] == 0

    found = client.get("/reports/search", params={"q": "leaking"}).json()
    assert [r["title"] for r in found] == ["Leaking main"]


def test_vote_flow(client):
    report = _create(client)
    url = f"/reports/{report['id']}/votes"

    first = client.post(url, json={"vote_type": "upvote"}, headers=OTHER_CITIZEN).json()
    assert first["action"] == "created"
    assert first["votes"] == {"upvotes": 1, "downvotes": 0, "total_votes": 1}

    second = client.post(url, json={"vote_type": "upvote"}, headers=OTHER_CITIZEN).json()
    assert second["action"] == "retracted"
    assert second["votes"]["total_votes"] == 0

    bad = client.post(url, json={"vote_type": "sideways"}, headers=OTHER_CITIZEN)
    assert bad.status_code == 422


def test_status_change_requires_staff(client):
    report = _create(client)
    response = client.patch(f"/reports/{report['id']}/status", json={"status": "validated"}, headers=CITIZEN)
    assert response.status_code == 403


def test_invalid_transition_is_409(client):
    report = _create(client)
    url = f"/reports/{report['id']}/status"

    ok = client.patch(url, json={"status": "validated", "message": "Confirmed on site"}, headers=STAFF)
    assert ok.status_code == 200
    assert ok.json()["validation"]["is_validated"] is True

    response = client.patch(url, json={"status": "resolved"}, headers=STAFF)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "invalid_transition"
    assert body["context"]["allowed"] == ["in_progress", "rejected", "duplicate"]


def test_duplicate_link_endpoint(client):
    a = _create(client)
    b = _create(client)

    linked = client.post(f"/reports/{a['id']}/duplicate-of/{b['id']}", headers=STAFF)
    assert linked.status_code == 200
    assert linked.json()["duplicate_of"] == b["id"]

    cycle = client.post(f"/reports/{b['id']}/duplicate-of/{a['id']}", headers=STAFF)
    assert cycle.status_code == 409
    assert cycle.json()["error"] == "duplicate_cycle"


def test_assign_comment_and_rating(client):
    report = _create(client)
    report_id = report["id"]

    assigned = client.post(
        f"/reports/{report_id}/assign",
        json={"department_code": "water", "staff_ids": ["crew-9"]},
        headers=STAFF,
    )
    assert assigned.status_code == 200
    assert assigned.json()["assigned_department"]["code"] == "WATER"
    assert assigned.json()["sla"]["expected_resolution_time"] == 72

    unknown = client.post(f"/reports/{report_id}/assign", json={"department_code": "NOPE"}, headers=STAFF)
    assert unknown.status_code == 404

    comment = client.post(f"/reports/{report_id}/comments", json={"message": "Thanks!"}, headers=OTHER_CITIZEN)
    assert comment.status_code == 201
    assert comment.json()["comments"][0]["user_id"] == "citizen-2"

    early = client.post(f"/reports/{report_id}/rating", json={"rating": 5}, headers=CITIZEN)
    assert early.status_code == 422


def test_hide_report(client):
    report = _create(client)
    assert client.delete(f"/reports/{report['id']}", headers=OTHER_CITIZEN).status_code == 403
    assert client.delete(f"/reports/{report['id']}", headers=CITIZEN).status_code == 200
    assert client.get(f"/reports/{report['id']}").status_code == 404


def test_user_trust_endpoint(client):
    _create(client)
    trust = client.get("/users/citizen-1/trust").json()
    assert trust["gamification"]["points"] == 10
    assert trust["gamification"]["badges"] == ["reporter"]
    assert client.get("/users/ghost/trust").status_code == 404


def test_admin_endpoints(client, clock):
    _create(client)

    window = {"start": "2026-01-01T00:00:00Z", "end": "2026-01-31T00:00:00Z"}
    assert client.get("/admin/analytics", params=window, headers=CITIZEN).status_code == 403
    rows = client.get("/admin/analytics", params=window, headers=STAFF).json()
    assert rows == [{
        "category": "roads_transport",
        "status": "submitted",
        "count": 1,
        "avg_resolution_time": None,
        "avg_priority": 50.0,
    }]

    clock.advance(hours=80)
    sweep = client.post("/admin/escalations/sweep", headers=STAFF).json()
    assert sweep["escalated"] == 1
    assert sweep["completed"] is True


def test_register_department_requires_admin(client):
    body = {"code": "snow", "name": "Snow Removal", "categories": ["roads_transport"],
            "sla": {"response_time": 4, "resolution_time": 24, "escalation_threshold": 12}}
    assert client.post("/admin/departments", json=body, headers=STAFF).status_code == 403

    created = client.post("/admin/departments", json=body, headers=ADMIN)
    assert created.status_code == 201
    assert created.json()["code"] == "SNOW"
    codes = [d["code"] for d in client.get("/admin/departments", headers=STAFF).json()]
    assert "SNOW" in codes


def test_vote_audit_endpoint(client):
    report = _create(client)
    client.post(f"/reports/{report['id']}/votes", json={"vote_type": "upvote"}, headers=OTHER_CITIZEN)
    url = f"/admin/reports/{report['id']}/votes/audit"

    assert client.get(url, headers=CITIZEN).status_code == 403
    audit = client.get(url, headers=STAFF).json()
    assert audit["consistent"] is True
    assert audit["ledger"] == {"upvotes": 1, "downvotes": 0, "total_votes": 1}
