"""
Status Workflow Engine - strict report lifecycle state machine.

DESIGN PRINCIPLES:
- submitted → validated → in_progress → resolved, no skipping, no going back
- Any non-terminal state may be rejected; duplicate only through linking
- Every transition appends an audit entry to status_updates
- Invalid transitions are rejected before anything is written
"""

from datetime import datetime
from typing import Dict, List, Optional
import logging

from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from app.core.settings import settings
from app.models.department import DepartmentSLA
from app.models.report import Report, ReportStatus, status_update_entry
from app.services.department_service import DepartmentService, get_department_service
from app.services.event_bus import EventDispatcher, EventType, get_event_dispatcher
from app.services.trust_score import TrustScoreEngine, get_trust_engine
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import hours_between, utcnow

logger = logging.getLogger(__name__)


class StatusWorkflowEngine:
    """
    Pure transition rules. Builds the guarded update for a transition
    without touching the store.
    """

    # Allowed transitions map: {from_status: [to_status, ...]}
    ALLOWED_TRANSITIONS: Dict[ReportStatus, List[ReportStatus]] = {
        ReportStatus.SUBMITTED: [ReportStatus.VALIDATED, ReportStatus.REJECTED, ReportStatus.DUPLICATE],
        ReportStatus.VALIDATED: [ReportStatus.IN_PROGRESS, ReportStatus.REJECTED, ReportStatus.DUPLICATE],
        ReportStatus.IN_PROGRESS: [ReportStatus.RESOLVED, ReportStatus.REJECTED, ReportStatus.DUPLICATE],
        ReportStatus.RESOLVED: [],
        ReportStatus.REJECTED: [],
        ReportStatus.DUPLICATE: [],
    }

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str) -> bool:
        try:
            from_enum = ReportStatus(from_status)
            to_enum = ReportStatus(to_status)
        except ValueError:
            return False
        return to_enum in cls.ALLOWED_TRANSITIONS.get(from_enum, [])

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        try:
            current_enum = ReportStatus(current_status)
        except ValueError:
            return []
        return [status.value for status in cls.ALLOWED_TRANSITIONS.get(current_enum, [])]

    @classmethod
    def build_transition(
        cls,
        report: Report,
        new_status,
        actor: str,
        now: datetime,
        sla: DepartmentSLA,
        message: Optional[str] = None,
        is_public: bool = True,
        allow_duplicate: bool = False,
    ) -> Dict:
        """
        Validate a transition and build its store update.

        Returns:
            Dict with expected (status guard), updates, appends and history_entry

        Raises:
            ValidationError: unknown status, or duplicate outside of linking
            InvalidTransitionError: transition not allowed from the current status
        """
        try:
            target = ReportStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown status: {new_status}")

        current = report.status
        if target == ReportStatus.DUPLICATE and not allow_duplicate:
            raise ValidationError("Reports become duplicates only by linking them to a canonical report")
        if not cls.is_valid_transition(current.value, target.value):
            raise InvalidTransitionError(current.value, target.value, cls.get_allowed_transitions(current.value))

        history_entry = status_update_entry(target, actor, now, message, is_public)
        updates = {"status": target.value, "updated_at": now}

        if target == ReportStatus.VALIDATED:
            updates["validation.is_validated"] = True
            updates["validation.validated_by"] = actor
            updates["validation.validated_at"] = now
            if message:
                updates["validation.validation_notes"] = message

        if target == ReportStatus.RESOLVED:
            elapsed = round(hours_between(report.created_at, now), 2)
            updates["resolution.resolved_at"] = now
            updates["resolution.resolved_by"] = actor
            updates["resolution.resolution_notes"] = message or ""
            updates["sla.actual_resolution_time"] = elapsed
            updates["sla.is_overdue"] = elapsed > sla.resolution_time

        return {
            "expected": {"status": current.value},
            "updates": updates,
            "appends": {"status_updates": [history_entry]},
            "history_entry": history_entry,
            "from_status": current.value,
            "to_status": target.value,
        }


class StatusWorkflowService:
    """Applies workflow transitions to stored reports."""

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        departments: Optional[DepartmentService] = None,
        trust_engine: Optional[TrustScoreEngine] = None,
        events: Optional[EventDispatcher] = None,
        clock=utcnow,
    ):
        self.store = store or get_report_store()
        self.departments = departments or get_department_service()
        self.trust_engine = trust_engine or get_trust_engine()
        self.events = events or get_event_dispatcher()
        self.clock = clock

    def transition_status(
        self,
        report_id: str,
        new_status,
        actor: str,
        message: Optional[str] = None,
        is_public: bool = True,
    ) -> Report:
        for attempt in range(1, settings.STATUS_MAX_ATTEMPTS + 1):
            data = self.store.get_report(report_id)
            if data is None:
                raise NotFoundError(f"Report {report_id} not found")
            report = Report.model_validate(data)

            plan = StatusWorkflowEngine.build_transition(
                report,
                new_status,
                actor,
                now=self.clock(),
                sla=self.departments.sla_for_report(report),
                message=message,
                is_public=is_public,
            )
            try:
                updated = self.store.update_report(
                    report_id,
                    expected=plan["expected"],
                    updates=plan["updates"],
                    appends=plan["appends"],
                )
            except ConflictError:
                logger.info(f"Status change on {report_id} raced (attempt {attempt}), retrying")
                continue
            break
        else:
            raise ConflictError(f"Report {report_id} kept changing during status update; please retry")

        logger.info(f"Report {report_id}: {plan['from_status']} → {plan['to_status']} by {actor}")

        if plan["to_status"] == ReportStatus.VALIDATED.value:
            try:
                self.trust_engine.award_validator_badge(actor)
            except Exception as e:
                logger.error(f"Failed to award validator badge to {actor}: {str(e)}", exc_info=True)

        self.events.publish(
            EventType.STATUS_CHANGED,
            report_id,
            from_status=plan["from_status"],
            to_status=plan["to_status"],
            updated_by=actor,
            is_public=is_public,
        )
        return Report.model_validate(updated)


# Global service instance
_workflow_service = None


def get_status_workflow_service() -> StatusWorkflowService:
    """Get or create StatusWorkflowService singleton."""
    global _workflow_service
    if _workflow_service is None:
        _workflow_service = StatusWorkflowService()
    return _workflow_service
