import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.vote import VoteAction, VoteType
from app.services.event_bus import EventType
from app.services.vote_service import VoteLedger
from app.stores import InMemoryReportStore


def test_first_upvote_creates_entry(submit, ledger):
    report = submit()
    result = ledger.cast_vote("u1", report.id, "upvote")

    assert result.action == VoteAction.CREATED
    assert result.previous_type is None
    assert result.vote_type == VoteType.UPVOTE
    assert (result.votes.upvotes, result.votes.downvotes, result.votes.total_votes) == (1, 0, 1)
    assert ledger.get_vote("u1", report.id).vote_type == VoteType.UPVOTE


def test_repeat_vote_retracts(submit, ledger):
    report = submit()
    ledger.cast_vote("u1", report.id, "downvote")
    result = ledger.cast_vote("u1", report.id, "downvote")

    assert result.action == VoteAction.RETRACTED
    assert result.vote_type is None
    assert (result.votes.downvotes, result.votes.total_votes) == (0, 0)
    assert ledger.get_vote("u1", report.id) is None


def test_opposite_vote_switches_without_changing_total(submit, ledger):
    report = submit()
    ledger.cast_vote("u1", report.id, "upvote")
    result = ledger.cast_vote("u1", report.id, "downvote")

    assert result.action == VoteAction.SWITCHED
    assert result.previous_type == VoteType.UPVOTE
    assert (result.votes.upvotes, result.votes.downvotes, result.votes.total_votes) == (0, 1, 1)


def test_unknown_report_and_vote_type(submit, ledger):
    with pytest.raises(NotFoundError):
        ledger.cast_vote("u1", "missing", "upvote")
    report = submit()
    with pytest.raises(ValidationError):
        ledger.cast_vote("u1", report.id, "sidevote")


def test_vote_cast_event(submit, ledger, events):
    report = submit()
    ledger.cast_vote("u1", report.id, "upvote")
    vote_events = [e for e in events.received if e.type == EventType.VOTE_CAST]
    assert len(vote_events) == 1
    assert vote_events[0].payload["action"] == "created"


def test_random_sequence_keeps_one_entry_and_invariant(submit, ledger, reports):
    report = submit()
    rng = random.Random(7)
    for _ in range(200):
        user = rng.choice(["u1", "u2", "u3"])
        ledger.cast_vote(user, report.id, rng.choice(["upvote", "downvote"]))
        current = reports.get_report(report.id)
        assert current.check_vote_invariant()

    entries = list(ledger.store.stream_votes(report.id))
    assert len({e["user_id"] for e in entries}) == len(entries)
    assert ledger.count_votes(report.id) == reports.get_report(report.id).votes


def test_concurrent_votes_from_distinct_users(submit, ledger, reports):
    report = submit()
    ballots = [(f"user-{i}", "upvote" if i < 60 else "downvote") for i in range(100)]

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda ballot: ledger.cast_vote(ballot[0], report.id, ballot[1]), ballots))

    votes = reports.get_report(report.id).votes
    assert (votes.upvotes, votes.downvotes, votes.total_votes) == (60, 40, 100)
    assert ledger.count_votes(report.id) == votes


def test_concurrent_votes_from_one_user_never_duplicate_entry(submit, ledger, reports):
    report = submit()

    def vote(vote_type):
        try:
            ledger.cast_vote("u1", report.id, vote_type)
        except ConflictError:
            pass

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(vote, ["upvote", "downvote"] * 25))

    entries = list(ledger.store.stream_votes(report.id))
    assert len(entries) <= 1
    current = reports.get_report(report.id)
    assert current.check_vote_invariant()
    assert ledger.count_votes(report.id) == current.votes


class AlwaysConflictingStore(InMemoryReportStore):
    def __init__(self):
        super().__init__()
        self.attempts = 0

    def apply_vote(self, *args, **kwargs):
        self.attempts += 1
        raise ConflictError("simulated contention")


def test_conflict_surfaces_after_bounded_attempts(trust, events, clock):
    store = AlwaysConflictingStore()
    store.insert_report({"id": "r1", "report_number": "REP-1-001", "votes": {}})
    ledger = VoteLedger(store=store, trust_engine=trust, events=events, clock=clock)

    with pytest.raises(ConflictError):
        ledger.cast_vote("u1", "r1", "upvote")
    assert store.attempts == 3


def test_audit_counters_detects_drift(submit, ledger, store):
    report = submit()
    ledger.cast_vote("u1", report.id, "upvote")
    ledger.cast_vote("u2", report.id, "downvote")

    audit = ledger.audit_counters(report.id)
    assert audit["consistent"] is True
    assert audit["ledger"].total_votes == 2

    store.update_report(report.id, increments={"votes.upvotes": 1})
    drifted = ledger.audit_counters(report.id)
    assert drifted["consistent"] is False
    assert drifted["stored"].upvotes == 2
    assert drifted["ledger"].upvotes == 1

    with pytest.raises(NotFoundError):
        ledger.audit_counters("missing")
