"""
Vote Service - the community vote ledger (upvote/downvote) on reports.

One ledger entry per (user, report). Repeating the same vote retracts it,
voting the other way switches it. The ledger write and the report's counter
increments are one atomic unit, so totals always satisfy
total_votes == upvotes + downvotes.
"""

from typing import Dict, Optional, Tuple
import logging

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.settings import settings
from app.models.report import Report, VoteCounters
from app.models.vote import VoteAction, VoteRecord, VoteResult, VoteType
from app.services.event_bus import EventDispatcher, EventType, get_event_dispatcher
from app.services.trust_score import TrustScoreEngine, get_trust_engine
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


# (previous, requested) -> (action, next ledger state, counter deltas)
VOTE_TRANSITIONS: Dict[Tuple[Optional[VoteType], VoteType], Tuple[VoteAction, Optional[VoteType], Dict[str, int]]] = {
    (None, VoteType.UPVOTE): (VoteAction.CREATED, VoteType.UPVOTE, {"upvotes": 1, "total_votes": 1}),
    (None, VoteType.DOWNVOTE): (VoteAction.CREATED, VoteType.DOWNVOTE, {"downvotes": 1, "total_votes": 1}),
    (VoteType.UPVOTE, VoteType.UPVOTE): (VoteAction.RETRACTED, None, {"upvotes": -1, "total_votes": -1}),
    (VoteType.DOWNVOTE, VoteType.DOWNVOTE): (VoteAction.RETRACTED, None, {"downvotes": -1, "total_votes": -1}),
    (VoteType.UPVOTE, VoteType.DOWNVOTE): (VoteAction.SWITCHED, VoteType.DOWNVOTE, {"upvotes": -1, "downvotes": 1}),
    (VoteType.DOWNVOTE, VoteType.UPVOTE): (VoteAction.SWITCHED, VoteType.UPVOTE, {"downvotes": -1, "upvotes": 1}),
}


def _parse_vote_type(vote_type) -> VoteType:
    try:
        return VoteType(vote_type)
    except ValueError:
        raise ValidationError(f"vote_type must be 'upvote' or 'downvote', got {vote_type!r}")


class VoteLedger:
    """Service for managing votes on reports."""

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        trust_engine: Optional[TrustScoreEngine] = None,
        events: Optional[EventDispatcher] = None,
        clock=utcnow,
    ):
        self.store = store or get_report_store()
        self.trust_engine = trust_engine or get_trust_engine()
        self.events = events or get_event_dispatcher()
        self.clock = clock

    def cast_vote(self, user_id: str, report_id: str, vote_type) -> VoteResult:
        """
        Create, switch or retract the user's vote on a report.

        Args:
            user_id: Trusted voter id
            report_id: Report to vote on
            vote_type: 'upvote' or 'downvote'

        Returns:
            VoteResult with the action taken and the updated counters

        Raises:
            ValidationError: unknown vote type
            NotFoundError: unknown report
            ConflictError: the entry kept changing for VOTE_MAX_ATTEMPTS attempts
        """
        requested = _parse_vote_type(vote_type)

        for attempt in range(1, settings.VOTE_MAX_ATTEMPTS + 1):
            if self.store.get_report(report_id) is None:
                raise NotFoundError(f"Report {report_id} not found")

            current = self.store.get_vote(user_id, report_id)
            previous = VoteType(current["vote_type"]) if current else None
            action, next_type, deltas = VOTE_TRANSITIONS[(previous, requested)]

            try:
                report = self.store.apply_vote(
                    user_id,
                    report_id,
                    expected_type=previous.value if previous else None,
                    new_type=next_type.value if next_type else None,
                    counter_deltas=deltas,
                    now=self.clock(),
                )
            except ConflictError:
                logger.info(f"Vote on {report_id} by {user_id} raced (attempt {attempt}), retrying")
                continue
            break
        else:
            raise ConflictError(f"Vote on report {report_id} kept conflicting; please retry")

        # Vote is committed; reputation is best effort
        trust_delta = 0
        try:
            trust_delta = self.trust_engine.apply_vote_effect(user_id, previous, requested)
        except Exception as e:
            logger.error(f"Failed to apply trust effect for {user_id}: {str(e)}", exc_info=True)

        votes = VoteCounters.model_validate(report.get("votes") or {})
        logger.info(
            f"Vote {action.value} on {report_id} by {user_id}: "
            f"{votes.upvotes} up / {votes.downvotes} down / {votes.total_votes} total"
        )
        self.events.publish(
            EventType.VOTE_CAST,
            report_id,
            user_id=user_id,
            action=action.value,
            previous_type=previous.value if previous else None,
            vote_type=next_type.value if next_type else None,
        )
        return VoteResult(
            report_id=report_id,
            action=action,
            previous_type=previous,
            vote_type=next_type,
            votes=votes,
            trust_delta=trust_delta,
        )

    def get_vote(self, user_id: str, report_id: str) -> Optional[VoteRecord]:
        data = self.store.get_vote(user_id, report_id)
        return VoteRecord.model_validate(data) if data else None

    def count_votes(self, report_id: str) -> VoteCounters:
        """Recount a report's votes from the ledger entries."""
        upvotes = downvotes = 0
        for vote in self.store.stream_votes(report_id):
            if vote.get("vote_type") == VoteType.UPVOTE.value:
                upvotes += 1
            elif vote.get("vote_type") == VoteType.DOWNVOTE.value:
                downvotes += 1
        return VoteCounters(upvotes=upvotes, downvotes=downvotes, total_votes=upvotes + downvotes)

    def audit_counters(self, report_id: str) -> Dict:
        """Compare a report's stored counters with a recount of its ledger entries."""
        data = self.store.get_report(report_id)
        if data is None:
            raise NotFoundError(f"Report {report_id} not found")
        report = Report.model_validate(data)
        recounted = self.count_votes(report_id)
        consistent = report.check_vote_invariant() and recounted == report.votes
        if not consistent:
            logger.warning(f"Vote counters for {report_id} drifted: stored={report.votes} ledger={recounted}")
        return {
            "report_id": report_id,
            "stored": report.votes,
            "ledger": recounted,
            "consistent": consistent,
        }


# Global service instance
_vote_ledger = None


def get_vote_ledger() -> VoteLedger:
    """Get or create VoteLedger singleton."""
    global _vote_ledger
    if _vote_ledger is None:
        _vote_ledger = VoteLedger()
    return _vote_ledger
