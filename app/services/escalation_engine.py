"""
Escalation Engine - SLA clock over open reports.

DESIGN PRINCIPLES:
- Escalation is a PARALLEL signal to the status workflow, never a status change
- A report escalates at most once per threshold window: window k starts at
  last_status_change + k * escalation_threshold
- Every escalation write is a compare-and-set on sla.last_escalated_at, so
  overlapping sweeps cannot double count
- The sweep walks reports by id from a cursor, can be cancelled between
  reports and resumes from the persisted cursor
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional
import asyncio
import logging
import math
import threading

from pydantic import BaseModel, Field

from app.core.errors import ConflictError, NotFoundError
from app.core.settings import settings
from app.models.department import DepartmentSLA
from app.models.report import Report, ReportStatus, TERMINAL_STATUSES
from app.services.department_service import DepartmentService, get_department_service
from app.services.event_bus import EventDispatcher, EventType, get_event_dispatcher
from app.stores import ReportStore, get_report_store
from app.utils.firestore_helpers import get_path
from app.utils.time_utils import hours_between, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SWEEP_CURSOR_KEY = "escalation_sweep"

OPEN_STATUSES = [status.value for status in ReportStatus if status not in TERMINAL_STATUSES]


class SweepResult(BaseModel):
    scanned: int = 0
    escalated: int = 0
    marked_overdue: int = 0
    conflicts: int = 0
    escalated_ids: List[str] = Field(default_factory=list)
    cursor: Optional[str] = None
    completed: bool = True
    started_at: datetime
    finished_at: Optional[datetime] = None


def current_window_start(last_change: datetime, now: datetime, threshold_hours: float) -> Optional[datetime]:
    """Start of the threshold window `now` falls in, or None until the first threshold is exceeded."""
    age = hours_between(last_change, now)
    if age <= threshold_hours:
        return None
    windows = math.floor(age / threshold_hours)
    return parse_timestamp(last_change) + timedelta(hours=windows * threshold_hours)


class EscalationEngine:
    """Walks open reports and escalates the ones past their SLA threshold."""

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        departments: Optional[DepartmentService] = None,
        events: Optional[EventDispatcher] = None,
        batch_size: Optional[int] = None,
        clock=utcnow,
    ):
        self.store = store or get_report_store()
        self.departments = departments or get_department_service()
        self.events = events or get_event_dispatcher()
        self.batch_size = batch_size or settings.ESCALATION_SWEEP_BATCH_SIZE
        self.clock = clock

    def evaluate(self, data: Dict, now: datetime, sla: DepartmentSLA) -> Optional[Dict]:
        """
        Build the guarded update for one report, or None when nothing is due.

        Returns:
            Dict with expected, updates, increments and escalate flag
        """
        report = Report.model_validate(data)
        if report.is_terminal:
            return None

        updates = {}
        increments = {}
        escalate = False

        window_start = current_window_start(report.last_status_change_at, now, sla.escalation_threshold)
        last_escalated = parse_timestamp(report.sla.last_escalated_at)
        if window_start is not None and (last_escalated is None or last_escalated < window_start):
            escalate = True
            increments["sla.escalation_level"] = 1
            updates["sla.last_escalated_at"] = now

        if not report.sla.is_overdue and hours_between(report.created_at, now) > sla.resolution_time:
            updates["sla.is_overdue"] = True

        if not updates:
            return None
        updates["updated_at"] = now
        return {
            "expected": {
                "status": data["status"],
                "sla.last_escalated_at": get_path(data, "sla.last_escalated_at"),
            },
            "updates": updates,
            "increments": increments,
            "escalate": escalate,
        }

    def run_sweep(
        self,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
        cursor: Optional[str] = None,
        resume: bool = False,
    ) -> SweepResult:
        """
        Run one escalation pass.

        Args:
            now: Evaluation time (defaults to the clock)
            cancel_event: Set to stop the sweep between reports
            cursor: Report id to start after
            resume: Start from the persisted cursor when no cursor is given

        Returns:
            SweepResult; cursor is set when the sweep stopped early
        """
        now = now or self.clock()
        if cursor is None and resume:
            saved = self.store.get_meta(SWEEP_CURSOR_KEY) or {}
            cursor = saved.get("cursor")

        result = SweepResult(started_at=now, cursor=cursor)
        sla_cache: Dict[str, DepartmentSLA] = {}
        logger.info(f"Escalation sweep started (cursor={cursor})")

        while True:
            batch = list(self.store.stream_reports(
                filters=[("status", "in", OPEN_STATUSES)],
                order_by="id",
                limit=self.batch_size,
                start_after=cursor,
            ))
            if not batch:
                break

            for data in batch:
                if cancel_event is not None and cancel_event.is_set():
                    result.completed = False
                    result.cursor = cursor
                    self.store.set_meta(SWEEP_CURSOR_KEY, {"cursor": cursor, "updated_at": self.clock()})
                    result.finished_at = self.clock()
                    logger.info(f"Escalation sweep cancelled at cursor {cursor}")
                    return result

                result.scanned += 1
                self._process(data, now, sla_cache, result)
                cursor = data["id"]

            if len(batch) < self.batch_size:
                break

        result.cursor = None
        result.finished_at = self.clock()
        self.store.set_meta(SWEEP_CURSOR_KEY, {"cursor": None, "updated_at": result.finished_at})
        logger.info(
            f"Escalation sweep finished: scanned={result.scanned} escalated={result.escalated} "
            f"overdue={result.marked_overdue} conflicts={result.conflicts}"
        )
        return result

    def _process(self, data: Dict, now: datetime, sla_cache: Dict, result: SweepResult) -> None:
        report_id = data["id"]
        sla = self.departments.sla_for_report(Report.model_validate(data), cache=sla_cache)
        plan = self.evaluate(data, now, sla)
        if plan is None:
            return

        try:
            updated = self.store.update_report(
                report_id,
                expected=plan["expected"],
                updates=plan["updates"],
                increments=plan["increments"],
            )
        except (ConflictError, NotFoundError) as e:
            # Another sweep or a status change got there first; next pass re-evaluates
            result.conflicts += 1
            logger.info(f"Skipping escalation of {report_id}: {e}")
            return

        if plan["updates"].get("sla.is_overdue"):
            result.marked_overdue += 1
        if plan["escalate"]:
            level = get_path(updated, "sla.escalation_level", 0)
            result.escalated += 1
            result.escalated_ids.append(report_id)
            logger.info(f"Report {report_id} escalated to level {level}")
            self.events.publish(
                EventType.ESCALATION_TRIGGERED,
                report_id,
                escalation_level=level,
                status=updated.get("status"),
                department=get_path(updated, "assigned_department.code"),
            )


class EscalationScheduler:
    """Runs the sweep periodically on the event loop, in a worker thread."""

    def __init__(self, engine: Optional[EscalationEngine] = None, interval_seconds: Optional[int] = None):
        self.engine = engine
        self.interval_seconds = interval_seconds or settings.ESCALATION_SWEEP_INTERVAL_SECONDS
        self._cancel = threading.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._cancel.clear()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Escalation scheduler started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        self._cancel.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Escalation scheduler stopped")

    async def _loop(self) -> None:
        engine = self.engine or get_escalation_engine()
        while not self._cancel.is_set():
            try:
                await asyncio.to_thread(engine.run_sweep, None, self._cancel, None, True)
            except Exception as e:
                logger.error(f"Escalation sweep failed: {str(e)}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)


# Global service instance (singleton pattern)
_escalation_engine = None


def get_escalation_engine() -> EscalationEngine:
    """Get or create EscalationEngine singleton instance."""
    global _escalation_engine
    if _escalation_engine is None:
        _escalation_engine = EscalationEngine()
    return _escalation_engine
