import pytest

from app.core.errors import NotFoundError
from app.models.user import Badge
from app.models.vote import VoteType
from app.services.trust_score import TrustPolicy, TrustScoreEngine, level_for_points

MEDIA = [{"type": "image", "url": "https://cdn.example.com/p1.jpg"}]


@pytest.mark.parametrize(
    "previous, requested, delta",
    [
        (None, VoteType.UPVOTE, 2),
        (None, VoteType.DOWNVOTE, -1),
        (VoteType.DOWNVOTE, VoteType.UPVOTE, 3),
        (VoteType.UPVOTE, VoteType.DOWNVOTE, -1),
        (VoteType.UPVOTE, VoteType.UPVOTE, -2),
        (VoteType.DOWNVOTE, VoteType.DOWNVOTE, 1),
    ],
)
def test_default_vote_deltas(previous, requested, delta):
    assert TrustPolicy().vote_delta(previous, requested) == delta


def test_vote_sequence_moves_voter_trust(submit, ledger, trust):
    report = submit()
    ledger.cast_vote("voter", report.id, "upvote")      # +2
    ledger.cast_vote("voter", report.id, "downvote")    # -1
    result = ledger.cast_vote("voter", report.id, "upvote")  # +3

    assert result.trust_delta == 3
    voter = trust.get_trust("voter")
    assert voter.trust_score == 100 + 2 - 1 + 3
    assert voter.votes_given == 1


def test_custom_policy_is_used(store, clock):
    policy = TrustPolicy(vote_deltas={(None, VoteType.UPVOTE): 10})
    engine = TrustScoreEngine(store=store, policy=policy, clock=clock)
    assert engine.apply_vote_effect("u1", None, VoteType.UPVOTE) == 10
    assert engine.apply_vote_effect("u1", VoteType.UPVOTE, VoteType.UPVOTE) == 0
    assert engine.get_trust("u1").trust_score == 110


@pytest.mark.parametrize("points, level", [(0, 1), (99, 1), (100, 2), (399, 2), (400, 3), (900, 4)])
def test_level_curve(points, level):
    assert level_for_points(points) == level


def test_first_report_awards_points_streak_and_badge(submit, trust):
    submit(reporter_id="alice")
    alice = trust.get_trust("alice")

    assert alice.reports_submitted == 1
    assert alice.gamification.points == 10
    assert alice.gamification.streak == 1
    assert alice.gamification.level == 1
    assert alice.gamification.badges == [Badge.REPORTER]


def test_streak_continues_within_window_and_resets_after(submit, trust, clock):
    submit(reporter_id="alice")
    clock.advance(hours=20)
    submit(reporter_id="alice")
    assert trust.get_trust("alice").gamification.streak == 2

    clock.advance(hours=30)
    submit(reporter_id="alice")
    assert trust.get_trust("alice").gamification.streak == 1


def test_badges_from_rule_table(submit, trust, clock):
    for index in range(10):
        submit(reporter_id="bob", media=MEDIA if index < 5 else [])
        clock.advance(hours=1)

    bob = trust.get_trust("bob")
    assert set(bob.gamification.badges) == {Badge.REPORTER, Badge.PHOTO_EXPERT, Badge.FREQUENT_REPORTER}
    assert bob.reports_with_media == 5
    assert bob.gamification.points == 100
    assert bob.gamification.level == 2


def test_validator_badge_on_validation(submit, workflow, trust):
    report = submit()
    workflow.transition_status(report.id, "validated", "staff-7")
    assert Badge.VALIDATOR in trust.get_trust("staff-7").gamification.badges


def test_unknown_user(trust):
    with pytest.raises(NotFoundError):
        trust.get_trust("nobody")
