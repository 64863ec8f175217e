import os

# Must be set before app modules read settings
os.environ["USE_MOCK_DB"] = "true"
os.environ["GEOCODING_PROVIDER"] = "none"
os.environ["ESCALATION_SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest

from app.models.report import ReportCreate
from app.services.analytics_service import AnalyticsService
from app.services.department_service import DepartmentService
from app.services.duplicate_linker import DuplicateLinker
from app.services.escalation_engine import EscalationEngine
from app.services.event_bus import EventDispatcher
from app.services.geocoding.base import NoOpProvider
from app.services.report_service import ReportService
from app.services.status_workflow import StatusWorkflowService
from app.services.trust_score import TrustScoreEngine
from app.services.vote_service import VoteLedger
from app.stores import InMemoryReportStore, set_report_store

STAFF = "staff-1"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def report_payload(**overrides) -> dict:
    payload = {
        "title": "Pothole on Main St",
        "description": "Deep pothole in the right lane near the school crossing.",
        "category": "roads_transport",
        "longitude": -122.4,
        "latitude": 37.8,
        "address": {"street": "Main St", "city": "Springfield", "state": "IL"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    store = InMemoryReportStore()
    set_report_store(store)
    yield store
    set_report_store(None)


@pytest.fixture
def events():
    dispatcher = EventDispatcher()
    dispatcher.received = []
    dispatcher.subscribe(dispatcher.received.append)
    return dispatcher


@pytest.fixture
def departments(store, clock):
    service = DepartmentService(store=store, clock=clock)
    service.ensure_default_departments()
    return service


@pytest.fixture
def trust(store, clock):
    return TrustScoreEngine(store=store, clock=clock)


@pytest.fixture
def reports(store, departments, trust, events, clock):
    return ReportService(
        store=store,
        departments=departments,
        trust_engine=trust,
        events=events,
        geocoder=NoOpProvider(),
        clock=clock,
    )


@pytest.fixture
def ledger(store, trust, events, clock):
    return VoteLedger(store=store, trust_engine=trust, events=events, clock=clock)


@pytest.fixture
def workflow(store, departments, trust, events, clock):
    return StatusWorkflowService(store=store, departments=departments, trust_engine=trust, events=events, clock=clock)


@pytest.fixture
def linker(store, departments, events, clock):
    return DuplicateLinker(store=store, departments=departments, events=events, clock=clock)


@pytest.fixture
def escalation(store, departments, events, clock):
    return EscalationEngine(store=store, departments=departments, events=events, clock=clock)


@pytest.fixture
def analytics(store):
    return AnalyticsService(store=store)


@pytest.fixture
def submit(reports):
    """Create a report through the service; keyword overrides go into the payload."""

    def _submit(reporter_id="citizen-1", **overrides):
        return reports.create_report(ReportCreate(**report_payload(**overrides)), reporter_id=reporter_id)

    return _submit


@pytest.fixture
def resolve(workflow):
    def _resolve(report_id, actor=STAFF):
        workflow.transition_status(report_id, "validated", actor)
        workflow.transition_status(report_id, "in_progress", actor)
        return workflow.transition_status(report_id, "resolved", actor, message="Fixed")

    return _resolve
