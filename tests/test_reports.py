import re

import pydantic
import pytest

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.report import ReportCreate, ReportStatus
from app.models.user import Identity, UserRole
from app.services import report_service as report_service_module
from app.services.event_bus import EventType
from tests.conftest import report_payload

METERS_PER_DEGREE = 111194.93


def test_created_report_round_trips(submit, reports):
    created = submit()
    stored = reports.get_report(created.id)

    assert stored.title == "Pothole on Main St"
    assert stored.category.value == "roads_transport"
    assert stored.location.coordinates == [-122.4, 37.8]
    assert stored.address.city == "Springfield"
    assert stored.status == ReportStatus.SUBMITTED
    assert stored.votes.total_votes == 0
    assert stored.ai_priority_score == 50
    assert [u.message for u in stored.status_updates] == ["Report submitted"]


def test_report_number_format(submit):
    report = submit()
    assert re.fullmatch(r"REP-\d{13}-\d{3}", report.report_number)


def test_report_created_event(submit, events):
    report = submit()
    assert [e.type for e in events.received] == [EventType.REPORT_CREATED]
    assert events.received[0].report_id == report.id


def test_report_number_collision_is_regenerated(submit, monkeypatch):
    numbers = iter(["REP-1-001", "REP-1-001", "REP-1-002"])
    monkeypatch.setattr(report_service_module, "generate_report_number", lambda now=None: next(numbers))

    first = submit()
    second = submit()
    assert first.report_number == "REP-1-001"
    assert second.report_number == "REP-1-002"


def test_supplied_report_number_collision_is_a_conflict(submit, store):
    submit(report_number="REP-1-777")
    with pytest.raises(ConflictError):
        submit(report_number="REP-1-777")
    assert len(list(store.stream_reports())) == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": ""},
        {"category": "potholes"},
        {"longitude": 200},
        {"latitude": -91},
        {"address": {"street": "Main St"}},
    ],
)
def test_invalid_submissions_are_rejected(overrides):
    with pytest.raises(pydantic.ValidationError):
        ReportCreate(**report_payload(**overrides))


def test_geojson_coordinates_are_accepted():
    payload = report_payload()
    del payload["longitude"], payload["latitude"]
    payload["location"] = {"type": "Point", "coordinates": [-122.4, 37.8]}
    data = ReportCreate(**payload)
    assert (data.longitude, data.latitude) == (-122.4, 37.8)


def test_find_nearby_respects_radius_and_orders_by_distance(submit, reports):
    near = submit(title="Near", latitude=37.8 + 100 / METERS_PER_DEGREE)
    nearest = submit(title="Nearest", latitude=37.8 + 10 / METERS_PER_DEGREE)
    submit(title="Far", latitude=37.8 + 5000 / METERS_PER_DEGREE)

    results = list(reports.find_nearby(-122.4, 37.8, 1000))

    assert [r.id for r, _ in results] == [nearest.id, near.id]
    assert results[1][1] == pytest.approx(100, abs=1)


def test_find_nearby_excludes_rejected_and_hidden(submit, reports, workflow):
    visible = submit()
    rejected = submit()
    hidden = submit(is_public=False)
    workflow.transition_status(rejected.id, "rejected", "staff-1")

    ids = [r.id for r, _ in reports.find_nearby(-122.4, 37.8, 500)]
    assert ids == [visible.id]
    assert hidden.id not in ids


def test_find_nearby_is_lazy(submit, reports):
    submit()
    results = reports.find_nearby(-122.4, 37.8, 1000)
    assert not isinstance(results, list)
    assert next(results)[0].title == "Pothole on Main St"


def test_find_nearby_rejects_bad_input_when_called(reports):
    with pytest.raises(ValidationError):
        reports.find_nearby(-122.4, 37.8, 0)
    with pytest.raises(ValidationError):
        reports.find_nearby(-122.4, 37.8, 60000)
    with pytest.raises(ValidationError):
        reports.find_nearby(-200, 37.8, 1000)


def test_list_by_category_newest_first(submit, reports, clock):
    older = submit()
    clock.advance(minutes=5)
    newer = submit()
    clock.advance(minutes=5)
    submit(category="water_sewage")

    listed = reports.list_by_category("roads_transport")
    assert [r.id for r in listed] == [newer.id, older.id]
    assert reports.list_by_category("roads_transport", status="validated") == []


def test_search_matches_text_and_address(submit, reports):
    pothole = submit()
    light = submit(title="Broken lamp", description="Dark corner", category="street_lighting",
                   address={"city": "Shelbyville", "zip_code": "62565"})

    assert [r.id for r in reports.search("POTHOLE")] == [pothole.id]
    assert [r.id for r in reports.search("shelby")] == [light.id]
    assert [r.id for r in reports.search("62565")] == [light.id]
    with pytest.raises(ValidationError):
        reports.search("  ")


def test_hide_is_soft(submit, reports, store):
    report = submit()
    reports.hide(report.id, Identity(user_id="citizen-1"))

    with pytest.raises(NotFoundError):
        reports.get_report(report.id)
    assert store.get_report(report.id)["is_public"] is False
    assert reports.search("pothole") == []


def test_inactive_reports_are_hidden_everywhere(submit, reports, store):
    report = submit()
    store.update_report(report.id, updates={"is_active": False})

    with pytest.raises(NotFoundError):
        reports.get_report(report.id)
    assert reports.get_report(report.id, include_hidden=True).is_active is False
    assert reports.list_reports() == []
    assert reports.search("pothole") == []
    assert list(reports.find_nearby(-122.4, 37.8, 1000)) == []


def test_hide_requires_reporter_or_staff(submit, reports):
    report = submit()
    with pytest.raises(PermissionDeniedError):
        reports.hide(report.id, Identity(user_id="someone-else"))
    hidden = reports.hide(report.id, Identity(user_id="staff-1", role=UserRole.ADMIN))
    assert hidden.is_public is False


def test_add_comment(submit, reports):
    report = submit()
    updated = reports.add_comment(report.id, "citizen-2", "Still there this morning")
    assert [c.message for c in updated.comments] == ["Still there this morning"]
    with pytest.raises(ValidationError):
        reports.add_comment(report.id, "citizen-2", "x" * 1001)


def test_rate_resolution_rules(submit, reports, resolve):
    report = submit()
    with pytest.raises(ValidationError):
        reports.rate_resolution(report.id, "citizen-1", 5)

    resolve(report.id)
    with pytest.raises(PermissionDeniedError):
        reports.rate_resolution(report.id, "citizen-2", 5)
    with pytest.raises(ValidationError):
        reports.rate_resolution(report.id, "citizen-1", 6)

    rated = reports.rate_resolution(report.id, "citizen-1", 4)
    assert rated.resolution.satisfaction_rating == 4


def test_report_gets_department_sla(submit):
    report = submit(category="water_sewage")
    assert report.sla.expected_resolution_time == 72
