import pytest

from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from app.models.report import ReportStatus
from app.services.event_bus import EventType
from app.services.status_workflow import StatusWorkflowEngine, StatusWorkflowService
from app.stores import InMemoryReportStore


def test_allowed_transition_table():
    assert StatusWorkflowEngine.is_valid_transition("submitted", "validated")
    assert StatusWorkflowEngine.is_valid_transition("validated", "rejected")
    assert not StatusWorkflowEngine.is_valid_transition("submitted", "in_progress")
    assert not StatusWorkflowEngine.is_valid_transition("resolved", "validated")
    assert not StatusWorkflowEngine.is_valid_transition("submitted", "submitted")
    assert StatusWorkflowEngine.get_allowed_transitions("resolved") == []


def test_full_lifecycle_appends_audit_entries(submit, workflow, resolve):
    report = submit()
    resolved = resolve(report.id)

    assert resolved.status == ReportStatus.RESOLVED
    assert [u.status for u in resolved.status_updates] == [
        ReportStatus.SUBMITTED,
        ReportStatus.VALIDATED,
        ReportStatus.IN_PROGRESS,
        ReportStatus.RESOLVED,
    ]
    assert resolved.validation.is_validated
    assert resolved.validation.validated_by == "staff-1"
    assert resolved.resolution.resolved_by == "staff-1"
    assert resolved.resolution.resolution_notes == "Fixed"


def test_resolution_time_and_overdue(submit, workflow, clock):
    on_time = submit()
    late = submit()
    for report_id in (on_time.id, late.id):
        workflow.transition_status(report_id, "validated", "staff-1")
        workflow.transition_status(report_id, "in_progress", "staff-1")

    clock.advance(hours=48)
    done = workflow.transition_status(on_time.id, "resolved", "staff-1")
    assert done.sla.actual_resolution_time == 48
    assert done.sla.is_overdue is False

    clock.advance(hours=200)
    overdue = workflow.transition_status(late.id, "resolved", "staff-1")
    assert overdue.sla.actual_resolution_time == 248
    assert overdue.sla.is_overdue is True


def test_resolved_to_validated_fails_without_mutation(submit, resolve, workflow, store):
    report = submit()
    resolve(report.id)
    before = store.get_report(report.id)

    with pytest.raises(InvalidTransitionError) as excinfo:
        workflow.transition_status(report.id, "validated", "staff-1")

    assert "resolved → validated" in str(excinfo.value)
    assert store.get_report(report.id) == before


def test_skipping_and_same_status_are_rejected(submit, workflow):
    report = submit()
    with pytest.raises(InvalidTransitionError):
        workflow.transition_status(report.id, "in_progress", "staff-1")
    with pytest.raises(InvalidTransitionError):
        workflow.transition_status(report.id, "submitted", "staff-1")


def test_duplicate_status_only_through_linking(submit, workflow):
    report = submit()
    with pytest.raises(ValidationError):
        workflow.transition_status(report.id, "duplicate", "staff-1")
    with pytest.raises(ValidationError):
        workflow.transition_status(report.id, "reopened", "staff-1")


def test_unknown_report(workflow):
    with pytest.raises(NotFoundError):
        workflow.transition_status("missing", "validated", "staff-1")


def test_status_changed_event(submit, workflow, events):
    report = submit()
    workflow.transition_status(report.id, "rejected", "staff-1", message="Not a city asset", is_public=False)

    changed = [e for e in events.received if e.type == EventType.STATUS_CHANGED]
    assert len(changed) == 1
    assert changed[0].payload["from_status"] == "submitted"
    assert changed[0].payload["to_status"] == "rejected"


class RacingStore(InMemoryReportStore):
    """Changes the status behind the workflow's back before its first write."""

    def __init__(self):
        super().__init__()
        self.raced = False

    def update_report(self, report_id, **kwargs):
        if not self.raced:
            self.raced = True
            super().update_report(report_id, updates={"status": "rejected"})
        return super().update_report(report_id, **kwargs)


def test_lost_race_rereads_and_reports_real_state(departments, trust, events, clock):
    store = RacingStore()
    store.insert_report({
        "id": "r1", "report_number": "REP-1-001", "title": "t", "description": "d",
        "category": "roads_transport", "location": {"type": "Point", "coordinates": [0, 0]},
        "address": {"city": "Springfield"}, "reporter_id": "c1", "status": "submitted",
        "created_at": clock(), "updated_at": clock(),
    })
    workflow = StatusWorkflowService(store=store, departments=departments, trust_engine=trust,
                                     events=events, clock=clock)

    with pytest.raises(InvalidTransitionError):
        workflow.transition_status("r1", "validated", "staff-1")
    assert store.get_report("r1")["status"] == "rejected"


def test_conflict_error_is_a_409():
    assert ConflictError("x").status_code == 409
    assert InvalidTransitionError("a", "b").status_code == 409
