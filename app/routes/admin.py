"""
Admin endpoints - staff-only operational controls.

SCOPE OF ADMIN:
- Aggregated analytics over a date range
- Manual escalation sweeps (the scheduler runs the same sweep)
- Department directory and SLA configuration
- Workflow introspection

Reports are never deleted or edited from here; lifecycle changes go
through the report endpoints.
"""

from datetime import datetime, timedelta
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status

from app.models.department import Department
from app.models.report import AnalyticsRow
from app.models.user import Identity
from app.routes.deps import require_admin, require_staff
from app.services.analytics_service import AnalyticsService, get_analytics_service
from app.services.department_service import DepartmentService, get_department_service
from app.services.escalation_engine import EscalationEngine, SweepResult, get_escalation_engine
from app.services.report_service import ReportService, get_report_service
from app.services.status_workflow import StatusWorkflowEngine
from app.services.vote_service import VoteLedger, get_vote_ledger
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/analytics", response_model=List[AnalyticsRow])
async def get_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    identity: Identity = Depends(require_staff),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """
    Report counts grouped by category and status.

    Defaults to the last 30 days. Both ends of the range are inclusive.
    """
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    return analytics.get_analytics(start, end)


@router.post("/escalations/sweep", response_model=SweepResult)
async def run_escalation_sweep(
    resume: bool = Query(False, description="Continue from the last persisted cursor"),
    identity: Identity = Depends(require_staff),
    engine: EscalationEngine = Depends(get_escalation_engine),
):
    """Run one escalation pass over all open reports."""
    logger.info(f"Manual escalation sweep requested by {identity.user_id} (resume={resume})")
    return engine.run_sweep(resume=resume)


@router.get("/departments", response_model=List[Department])
async def list_departments(
    identity: Identity = Depends(require_staff),
    departments: DepartmentService = Depends(get_department_service),
):
    return departments.list_departments()


@router.post("/departments", status_code=status.HTTP_201_CREATED, response_model=Department)
async def register_department(
    department: Department,
    identity: Identity = Depends(require_admin),
    departments: DepartmentService = Depends(get_department_service),
):
    """Create or replace a department and its SLA hours (admin only)."""
    return departments.register_department(department)


@router.get("/reports/{report_id}/allowed-transitions")
async def get_allowed_transitions(
    report_id: str,
    identity: Identity = Depends(require_staff),
    service: ReportService = Depends(get_report_service),
):
    """Statuses the report can move to next via PATCH /reports/{id}/status."""
    report = service.get_report(report_id, include_hidden=True)
    allowed = [s for s in StatusWorkflowEngine.get_allowed_transitions(report.status.value) if s != "duplicate"]
    return {
        "report_id": report_id,
        "current_status": report.status.value,
        "allowed_transitions": allowed,
        "is_terminal": report.is_terminal,
    }


@router.get("/reports/{report_id}/votes/audit")
async def audit_vote_counters(
    report_id: str,
    identity: Identity = Depends(require_staff),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """Recount a report's votes from the ledger and compare with its stored counters."""
    return ledger.audit_counters(report_id)
