"""
Duplicate Linker - marks a report as a duplicate of a canonical report.

DESIGN PRINCIPLES:
- Links form a forest: a canonical is never itself a duplicate
- Both reports are updated as one unit, locked in ascending id order
- Linking never merges vote counts; the child keeps its own votes
"""

from typing import Optional
import logging

from app.core.errors import ConflictError, CycleError, InvalidTransitionError, NotFoundError, ValidationError
from app.core.settings import settings
from app.models.report import Report, ReportStatus
from app.services.department_service import DepartmentService, get_department_service
from app.services.event_bus import EventDispatcher, EventType, get_event_dispatcher
from app.services.status_workflow import StatusWorkflowEngine
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Upper bound on duplicate_of hops followed while looking for cycles
MAX_CHAIN_DEPTH = 32


class DuplicateLinker:
    """Service for linking duplicate reports to their canonical report."""

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        departments: Optional[DepartmentService] = None,
        events: Optional[EventDispatcher] = None,
        clock=utcnow,
    ):
        self.store = store or get_report_store()
        self.departments = departments or get_department_service()
        self.events = events or get_event_dispatcher()
        self.clock = clock

    def _load(self, report_id: str) -> Report:
        data = self.store.get_report(report_id)
        if data is None:
            raise NotFoundError(f"Report {report_id} not found")
        return Report.model_validate(data)

    def _check_chain(self, child_id: str, canonical: Report) -> None:
        """CycleError if following duplicate_of from the canonical leads back to the child."""
        seen = {canonical.id}
        next_id = canonical.duplicate_of
        for _ in range(MAX_CHAIN_DEPTH):
            if next_id is None:
                return
            if next_id == child_id or next_id in seen:
                raise CycleError(
                    f"Linking {child_id} to {canonical.id} would create a duplicate cycle",
                    details={"child_id": child_id, "canonical_id": canonical.id},
                )
            seen.add(next_id)
            data = self.store.get_report(next_id)
            next_id = data.get("duplicate_of") if data else None

    def validate_link(self, child: Report, canonical: Report) -> None:
        self._check_chain(child.id, canonical)
        if canonical.duplicate_of or canonical.status == ReportStatus.DUPLICATE:
            raise ValidationError(
                f"Report {canonical.id} is itself a duplicate of {canonical.duplicate_of}; link to that report instead"
            )
        if child.duplicates:
            raise ValidationError(
                f"Report {child.id} already has {len(child.duplicates)} duplicate(s) and cannot become a duplicate"
            )
        if child.is_terminal:
            raise InvalidTransitionError(
                child.status.value,
                ReportStatus.DUPLICATE.value,
                StatusWorkflowEngine.get_allowed_transitions(child.status.value),
            )

    def link_duplicate(self, child_id: str, canonical_id: str, actor: str) -> Report:
        """
        Mark child_id as a duplicate of canonical_id.

        Raises:
            CycleError: self link, or the canonical's chain leads back to the child
            ValidationError: canonical is a duplicate, or the child has duplicates
            InvalidTransitionError: child is already terminal
            NotFoundError: either report does not exist

        Returns:
            The updated child report
        """
        if child_id == canonical_id:
            raise CycleError(f"Report {child_id} cannot be a duplicate of itself")

        for attempt in range(1, settings.LINK_MAX_ATTEMPTS + 1):
            child = self._load(child_id)
            canonical = self._load(canonical_id)
            self.validate_link(child, canonical)

            now = self.clock()
            plan = StatusWorkflowEngine.build_transition(
                child,
                ReportStatus.DUPLICATE,
                actor,
                now=now,
                sla=self.departments.sla_for_report(child),
                message=f"Marked as duplicate of {canonical.report_number}",
                allow_duplicate=True,
            )
            try:
                new_child, _ = self.store.link_reports(
                    child_id,
                    canonical_id,
                    child_expected=dict(plan["expected"], duplicate_of=None, duplicates=[]),
                    canonical_expected={"status": canonical.status.value, "duplicate_of": None},
                    child_updates=dict(plan["updates"], duplicate_of=canonical_id),
                    child_appends=plan["appends"],
                    canonical_appends={"duplicates": [child_id]},
                    canonical_updates={"updated_at": now},
                )
            except ConflictError:
                logger.info(f"Linking {child_id} -> {canonical_id} raced (attempt {attempt}), retrying")
                continue

            logger.info(f"Report {child_id} linked as duplicate of {canonical_id} by {actor}")
            self.events.publish(
                EventType.DUPLICATE_LINKED,
                child_id,
                canonical_id=canonical_id,
                linked_by=actor,
                from_status=plan["from_status"],
            )
            self.events.publish(
                EventType.STATUS_CHANGED,
                child_id,
                from_status=plan["from_status"],
                to_status=plan["to_status"],
                updated_by=actor,
                is_public=True,
            )
            return Report.model_validate(new_child)

        raise ConflictError(f"Reports {child_id} and {canonical_id} kept changing during linking; please retry")


# Global service instance
_duplicate_linker = None


def get_duplicate_linker() -> DuplicateLinker:
    """Get or create DuplicateLinker singleton."""
    global _duplicate_linker
    if _duplicate_linker is None:
        _duplicate_linker = DuplicateLinker()
    return _duplicate_linker
