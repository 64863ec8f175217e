"""
Report endpoints - submission, retrieval, voting and lifecycle actions.
"""

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status

from app.models.report import (
    AssignmentRequest,
    CommentCreate,
    RatingRequest,
    Report,
    ReportCategory,
    ReportCreate,
    ReportStatus,
    ReportSummary,
    StatusChangeRequest,
)
from app.models.user import Identity
from app.models.vote import VoteRequest, VoteResult
from app.routes.deps import get_identity, require_staff
from app.services.department_service import DepartmentService, get_department_service
from app.services.duplicate_linker import DuplicateLinker, get_duplicate_linker
from app.services.report_service import (
    DEFAULT_NEARBY_RADIUS_METERS,
    ReportService,
    get_report_service,
)
from app.services.status_workflow import StatusWorkflowService, get_status_workflow_service
from app.services.vote_service import VoteLedger, get_vote_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Report)
async def submit_report(
    report: ReportCreate,
    identity: Identity = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
):
    """
    Submit a new citizen report.

    The report starts in `submitted` with zeroed vote counters and a
    generated report number. Returns the stored report.
    """
    logger.info(f"POST /reports - category={report.category.value} reporter={identity.user_id}")
    return service.create_report(report, reporter_id=identity.user_id)


@router.get("", response_model=List[ReportSummary])
async def list_reports(
    category: Optional[ReportCategory] = None,
    report_status: Optional[ReportStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    service: ReportService = Depends(get_report_service),
):
    """Public reports, most recent first."""
    reports = service.list_reports(category=category, status=report_status, limit=limit)
    return [ReportSummary.from_report(r) for r in reports]


@router.get("/nearby", response_model=List[ReportSummary])
async def nearby_reports(
    longitude: float = Query(..., ge=-180, le=180),
    latitude: float = Query(..., ge=-90, le=90),
    radius: float = Query(DEFAULT_NEARBY_RADIUS_METERS, gt=0, description="Meters"),
    limit: int = Query(50, ge=1, le=200),
    service: ReportService = Depends(get_report_service),
):
    """Public, non-rejected reports within `radius` meters, nearest first."""
    results = []
    for report, distance in service.find_nearby(longitude, latitude, radius):
        results.append(ReportSummary.from_report(report, distance_meters=distance))
        if len(results) >= limit:
            break
    return results


@router.get("/search", response_model=List[ReportSummary])
async def search_reports(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    service: ReportService = Depends(get_report_service),
):
    return [ReportSummary.from_report(r) for r in service.search(q, limit=limit)]


@router.get("/{report_id}", response_model=Report)
async def get_report(report_id: str, service: ReportService = Depends(get_report_service)):
    return service.get_report(report_id)


@router.delete("/{report_id}", response_model=Report)
async def hide_report(
    report_id: str,
    identity: Identity = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
):
    """Soft-hide a report (reporter or staff). Reports are never hard-deleted."""
    return service.hide(report_id, identity)


@router.post("/{report_id}/votes", response_model=VoteResult)
async def cast_vote(
    report_id: str,
    request: VoteRequest,
    identity: Identity = Depends(get_identity),
    ledger: VoteLedger = Depends(get_vote_ledger),
):
    """
    Cast, switch or retract a vote.

    Repeating the same vote retracts it; the opposite vote switches it.
    """
    return ledger.cast_vote(identity.user_id, report_id, request.vote_type)


@router.patch("/{report_id}/status", response_model=Report)
async def change_status(
    report_id: str,
    request: StatusChangeRequest,
    identity: Identity = Depends(require_staff),
    workflow: StatusWorkflowService = Depends(get_status_workflow_service),
):
    """
    Move a report through its lifecycle (staff only).

    Allowed: submitted → validated → in_progress → resolved; any open
    report may be rejected. Anything else returns 409.
    """
    return workflow.transition_status(
        report_id,
        request.status,
        actor=identity.user_id,
        message=request.message,
        is_public=request.is_public,
    )


@router.post("/{report_id}/duplicate-of/{canonical_id}", response_model=Report)
async def link_duplicate(
    report_id: str,
    canonical_id: str,
    identity: Identity = Depends(require_staff),
    linker: DuplicateLinker = Depends(get_duplicate_linker),
):
    return linker.link_duplicate(report_id, canonical_id, actor=identity.user_id)


@router.post("/{report_id}/assign", response_model=Report)
async def assign_report(
    report_id: str,
    request: AssignmentRequest,
    identity: Identity = Depends(require_staff),
    departments: DepartmentService = Depends(get_department_service),
):
    return departments.assign_report(
        report_id, request.department_code, request.staff_ids, assigned_by=identity.user_id
    )


@router.post("/{report_id}/comments", status_code=status.HTTP_201_CREATED, response_model=Report)
async def add_comment(
    report_id: str,
    request: CommentCreate,
    identity: Identity = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
):
    return service.add_comment(report_id, identity.user_id, request.message, request.is_public)


@router.post("/{report_id}/rating", response_model=Report)
async def rate_resolution(
    report_id: str,
    request: RatingRequest,
    identity: Identity = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
):
    return service.rate_resolution(report_id, identity.user_id, request.rating)
