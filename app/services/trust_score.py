"""
Trust Score Engine - reputation effects of votes and report submissions.

POLICY (defaults, replaceable via TrustPolicy):

Vote deltas for the voter, keyed by (previous vote, requested vote):
- none -> upvote:          +2
- none -> downvote:        -1
- downvote -> upvote:      +3
- upvote -> downvote:      -1
- upvote -> upvote:        -2  (retract)
- downvote -> downvote:    +1  (retract)

Report submission:
- points += REPORT_SUBMISSION_POINTS
- streak +1 when the previous report is within STREAK_WINDOW_HOURS, else 1
- level = 1 + floor(sqrt(points / 100)), never decreasing
- badges from BADGE_RULES
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
import logging
import math

from app.core.errors import ConflictError, NotFoundError
from app.core.settings import settings
from app.models.report import Report
from app.models.user import Badge, UserTrust
from app.models.vote import VoteType
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import hours_between, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


VoteKey = Tuple[Optional[VoteType], VoteType]

DEFAULT_VOTE_DELTAS: Dict[VoteKey, int] = {
    (None, VoteType.UPVOTE): 2,
    (None, VoteType.DOWNVOTE): -1,
    (VoteType.DOWNVOTE, VoteType.UPVOTE): 3,
    (VoteType.UPVOTE, VoteType.DOWNVOTE): -1,
    (VoteType.UPVOTE, VoteType.UPVOTE): -2,
    (VoteType.DOWNVOTE, VoteType.DOWNVOTE): 1,
}


@dataclass(frozen=True)
class BadgeRule:
    """A badge is granted once its predicate holds for the user's updated stats."""
    rule_id: str
    badge: Badge
    predicate: Callable[[Dict], bool]
    description: str = ""


BADGE_RULES: List[BadgeRule] = [
    BadgeRule("first_report", Badge.REPORTER,
              lambda stats: stats["reports_submitted"] >= 1, "Submitted a first report"),
    BadgeRule("ten_reports", Badge.FREQUENT_REPORTER,
              lambda stats: stats["reports_submitted"] >= 10, "Submitted 10 reports"),
    BadgeRule("five_media_reports", Badge.PHOTO_EXPERT,
              lambda stats: stats["reports_with_media"] >= 5, "Submitted 5 reports with media"),
    BadgeRule("community_hero", Badge.COMMUNITY_HERO,
              lambda stats: stats["reports_submitted"] >= 50 or stats["points"] >= 500,
              "50 reports or 500 points"),
]


@dataclass
class TrustPolicy:
    vote_deltas: Dict[VoteKey, int] = field(default_factory=lambda: dict(DEFAULT_VOTE_DELTAS))
    badge_rules: List[BadgeRule] = field(default_factory=lambda: list(BADGE_RULES))
    submission_points: int = field(default_factory=lambda: settings.REPORT_SUBMISSION_POINTS)
    streak_window_hours: float = field(default_factory=lambda: settings.STREAK_WINDOW_HOURS)

    def vote_delta(self, previous: Optional[VoteType], requested: VoteType) -> int:
        previous = VoteType(previous) if previous else None
        return self.vote_deltas.get((previous, VoteType(requested)), 0)


def level_for_points(points: int) -> int:
    return 1 + math.isqrt(max(points, 0) // 100)


def next_streak(last_report_date: Optional[datetime], submitted_at: datetime, current: int, window_hours: float) -> int:
    last = parse_timestamp(last_report_date)
    if last is None:
        return 1
    if 0 <= hours_between(last, submitted_at) <= window_hours:
        return current + 1
    return 1


class TrustScoreEngine:
    """Applies trust and gamification effects to user records."""

    def __init__(self, store: Optional[ReportStore] = None, policy: Optional[TrustPolicy] = None, clock=utcnow):
        self.store = store or get_report_store()
        self.policy = policy or TrustPolicy()
        self.clock = clock

    def _defaults(self) -> Dict:
        now = self.clock()
        return {
            "trust_score": settings.INITIAL_TRUST_SCORE,
            "reports_submitted": 0,
            "reports_with_media": 0,
            "votes_given": 0,
            "gamification": {"points": 0, "level": 1, "badges": [], "streak": 0, "last_report_date": None},
            "created_at": now,
            "updated_at": now,
        }

    def get_trust(self, user_id: str) -> UserTrust:
        data = self.store.get_user(user_id)
        if data is None:
            raise NotFoundError(f"User {user_id} not found")
        return UserTrust.model_validate(data)

    def apply_vote_effect(self, voter_id: str, previous: Optional[VoteType], requested: VoteType) -> int:
        """Increment the voter's trust score by the policy delta. Returns the delta."""
        delta = self.policy.vote_delta(previous, requested)
        self.store.ensure_user(voter_id, self._defaults())
        increments = {"trust_score": delta} if delta else {}
        if previous is None:
            increments["votes_given"] = 1
        if increments:
            self.store.update_user(voter_id, increments=increments, updates={"updated_at": self.clock()})
        logger.debug(f"Trust effect for {voter_id}: {previous} -> {requested} = {delta:+d}")
        return delta

    def apply_report_submission_effect(self, reporter_id: str, report: Report) -> UserTrust:
        """Points, streak, level and badges for a newly submitted report."""
        self.store.ensure_user(reporter_id, self._defaults())
        submitted_at = report.created_at

        for _ in range(settings.USER_UPDATE_MAX_ATTEMPTS):
            user = UserTrust.model_validate(self.store.get_user(reporter_id))
            game = user.gamification

            stats = {
                "reports_submitted": user.reports_submitted + 1,
                "reports_with_media": user.reports_with_media + (1 if report.media else 0),
                "points": game.points + self.policy.submission_points,
            }
            new_badges = [
                rule.badge.value for rule in self.policy.badge_rules
                if rule.badge not in game.badges and rule.predicate(stats)
            ]
            updates = {
                "reports_submitted": stats["reports_submitted"],
                "reports_with_media": stats["reports_with_media"],
                "gamification.points": stats["points"],
                "gamification.level": max(game.level, level_for_points(stats["points"])),
                "gamification.streak": next_streak(
                    game.last_report_date, submitted_at, game.streak, self.policy.streak_window_hours
                ),
                "gamification.last_report_date": submitted_at,
                "updated_at": self.clock(),
            }
            try:
                updated = self.store.update_user(
                    reporter_id,
                    expected={"reports_submitted": user.reports_submitted},
                    updates=updates,
                    appends={"gamification.badges": new_badges} if new_badges else None,
                )
            except ConflictError:
                continue
            if new_badges:
                logger.info(f"User {reporter_id} earned badges: {new_badges}")
            return UserTrust.model_validate(updated)

        raise ConflictError(f"User {reporter_id} kept changing during submission effect; please retry")

    def award_validator_badge(self, user_id: str) -> None:
        self.store.ensure_user(user_id, self._defaults())
        self.store.update_user(
            user_id,
            updates={"updated_at": self.clock()},
            appends={"gamification.badges": [Badge.VALIDATOR.value]},
        )


# Global service instance (singleton pattern)
_trust_engine = None


def get_trust_engine() -> TrustScoreEngine:
    """Get or create TrustScoreEngine singleton."""
    global _trust_engine
    if _trust_engine is None:
        _trust_engine = TrustScoreEngine()
    return _trust_engine
