import threading
from datetime import timedelta

from app.services.escalation_engine import (
    SWEEP_CURSOR_KEY,
    EscalationEngine,
    current_window_start,
)
from app.services.event_bus import EventType

# Default ROADS department: escalation threshold 72h, resolution 168h


def test_window_start(clock):
    start = clock()
    assert current_window_start(start, start + timedelta(hours=71), 72) is None
    assert current_window_start(start, start + timedelta(hours=72), 72) is None
    assert current_window_start(start, start + timedelta(hours=73), 72) == start + timedelta(hours=72)
    assert current_window_start(start, start + timedelta(hours=150), 72) == start + timedelta(hours=144)


def test_two_sweeps_escalate_exactly_once(submit, escalation, reports, clock):
    report = submit()
    clock.advance(hours=73)

    first = escalation.run_sweep()
    second = escalation.run_sweep()

    assert first.escalated_ids == [report.id]
    assert second.escalated == 0
    assert reports.get_report(report.id).sla.escalation_level == 1


def test_next_window_escalates_again(submit, escalation, reports, clock):
    report = submit()
    clock.advance(hours=73)
    escalation.run_sweep()
    clock.advance(hours=72)
    escalation.run_sweep()

    sla = reports.get_report(report.id).sla
    assert sla.escalation_level == 2
    assert sla.last_escalated_at == clock()


def test_not_escalated_before_threshold(submit, escalation, reports, clock):
    report = submit()
    clock.advance(hours=71)
    result = escalation.run_sweep()
    assert result.escalated == 0
    assert result.scanned == 1
    assert reports.get_report(report.id).sla.escalation_level == 0


def test_status_change_restarts_clock(submit, escalation, workflow, reports, clock):
    report = submit()
    clock.advance(hours=60)
    workflow.transition_status(report.id, "validated", "staff-1")
    clock.advance(hours=20)

    assert escalation.run_sweep().escalated == 0
    assert reports.get_report(report.id).sla.escalation_level == 0


def test_terminal_reports_are_skipped(submit, escalation, workflow, clock):
    report = submit()
    workflow.transition_status(report.id, "rejected", "staff-1")
    clock.advance(hours=500)
    result = escalation.run_sweep()
    assert result.scanned == 0


def test_overdue_marked_past_resolution_time(submit, escalation, reports, clock):
    report = submit()
    clock.advance(hours=170)
    result = escalation.run_sweep()

    assert result.marked_overdue == 1
    assert reports.get_report(report.id).sla.is_overdue is True
    assert escalation.run_sweep().marked_overdue == 0


def test_department_threshold_is_used(submit, escalation, reports, clock):
    water = submit(category="water_sewage")  # WATER: 24h threshold
    roads = submit()
    clock.advance(hours=25)

    result = escalation.run_sweep()
    assert result.escalated_ids == [water.id]
    assert reports.get_report(roads.id).sla.escalation_level == 0


def test_escalation_event(submit, escalation, events, clock):
    report = submit()
    clock.advance(hours=80)
    escalation.run_sweep()
    triggered = [e for e in events.received if e.type == EventType.ESCALATION_TRIGGERED]
    assert [e.report_id for e in triggered] == [report.id]
    assert triggered[0].payload["escalation_level"] == 1


def test_cancel_and_resume_from_persisted_cursor(submit, store, departments, events, reports, clock):
    created = [submit() for _ in range(3)]
    clock.advance(hours=73)
    engine = EscalationEngine(store=store, departments=departments, events=events, batch_size=1, clock=clock)

    cancel = threading.Event()
    events.subscribe(lambda event: cancel.set(), EventType.ESCALATION_TRIGGERED)
    partial = engine.run_sweep(cancel_event=cancel)

    assert partial.completed is False
    assert partial.escalated == 1
    assert partial.cursor == sorted(r.id for r in created)[0]
    assert store.get_meta(SWEEP_CURSOR_KEY)["cursor"] == partial.cursor

    cancel.clear()
    resumed = engine.run_sweep(resume=True, cancel_event=threading.Event())

    assert resumed.completed is True
    assert resumed.escalated == 2
    assert store.get_meta(SWEEP_CURSOR_KEY)["cursor"] is None
    assert all(reports.get_report(r.id).sla.escalation_level == 1 for r in created)
