"""
Department Service - SLA configuration and report assignment.

Each category is handled by one department; the department's SLA hours
drive the expected resolution time, the overdue flag and the escalation
clock. Reports without a department fall back to the SLA defaults from
settings.
"""

from typing import Dict, List, Optional
import logging

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.settings import settings
from app.models.base import to_document
from app.models.department import Department, DepartmentSLA
from app.models.report import Report, ReportCategory
from app.stores import ReportStore, get_report_store
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


DEFAULT_DEPARTMENTS: List[Department] = [
    Department(code="ROADS", name="Roads & Transport", categories=[ReportCategory.ROADS_TRANSPORT],
               sla=DepartmentSLA(response_time=24, resolution_time=168, escalation_threshold=72)),
    Department(code="WATER", name="Water & Sewage", categories=[ReportCategory.WATER_SEWAGE],
               sla=DepartmentSLA(response_time=12, resolution_time=72, escalation_threshold=24)),
    Department(code="POWER", name="Electricity & Street Lighting",
               categories=[ReportCategory.ELECTRICITY, ReportCategory.STREET_LIGHTING],
               sla=DepartmentSLA(response_time=6, resolution_time=48, escalation_threshold=24)),
    Department(code="SANITATION", name="Waste Management", categories=[ReportCategory.WASTE_MANAGEMENT]),
    Department(code="SAFETY", name="Public Safety",
               categories=[ReportCategory.PUBLIC_SAFETY, ReportCategory.NOISE_POLLUTION],
               sla=DepartmentSLA(response_time=2, resolution_time=24, escalation_threshold=6)),
    Department(code="PARKS", name="Parks & Recreation", categories=[ReportCategory.PARKS_RECREATION]),
    Department(code="ENVIRONMENT", name="Environment", categories=[ReportCategory.AIR_POLLUTION]),
    Department(code="BUILDINGS", name="Building Inspections", categories=[ReportCategory.BUILDING_VIOLATIONS]),
    Department(code="GENERAL", name="General Services", categories=[ReportCategory.OTHER]),
]


def default_sla() -> DepartmentSLA:
    return DepartmentSLA(
        response_time=settings.DEFAULT_RESPONSE_HOURS,
        resolution_time=settings.DEFAULT_RESOLUTION_HOURS,
        escalation_threshold=settings.DEFAULT_ESCALATION_HOURS,
    )


class DepartmentService:
    """Department directory plus the assignment operation."""

    def __init__(self, store: Optional[ReportStore] = None, clock=utcnow):
        self.store = store or get_report_store()
        self.clock = clock

    def register_department(self, department: Department) -> Department:
        saved = self.store.save_department(to_document(department))
        logger.info(f"Department registered: {department.code} ({department.name})")
        return Department.model_validate(saved)

    def ensure_default_departments(self) -> int:
        """Seed the default directory for any department code not yet present."""
        created = 0
        for department in DEFAULT_DEPARTMENTS:
            if self.store.get_department(department.code) is None:
                self.register_department(department)
                created += 1
        return created

    def get_department(self, code: str) -> Department:
        data = self.store.get_department(code.strip().upper())
        if data is None:
            raise NotFoundError(f"Department {code} not found")
        return Department.model_validate(data)

    def list_departments(self) -> List[Department]:
        return [Department.model_validate(d) for d in self.store.list_departments()]

    def department_for_category(self, category) -> Optional[Department]:
        category = ReportCategory(category)
        for department in self.list_departments():
            if department.is_active and category in department.categories:
                return department
        return None

    def sla_for_report(self, report: Report, cache: Optional[Dict[str, DepartmentSLA]] = None) -> DepartmentSLA:
        """
        SLA thresholds that apply to a report: its assigned department, else
        the department handling its category, else the settings defaults.
        """
        key = report.assigned_department.code if report.assigned_department else f"category:{report.category.value}"
        if cache is not None and key in cache:
            return cache[key]

        department = None
        if report.assigned_department:
            data = self.store.get_department(report.assigned_department.code)
            department = Department.model_validate(data) if data else None
        if department is None:
            department = self.department_for_category(report.category)
        sla = department.sla if department else default_sla()

        if cache is not None:
            cache[key] = sla
        return sla

    def assign_report(self, report_id: str, department_code: str, staff_ids: List[str], assigned_by: str) -> Report:
        """
        Assign a report to a department (and optionally staff members).

        Sets sla.expected_resolution_time from the department's SLA. Terminal
        reports cannot be reassigned.
        """
        department = self.get_department(department_code)
        if not department.is_active:
            raise ValidationError(f"Department {department.code} is not active")

        for _ in range(settings.STATUS_MAX_ATTEMPTS):
            data = self.store.get_report(report_id)
            if data is None:
                raise NotFoundError(f"Report {report_id} not found")
            report = Report.model_validate(data)
            if report.is_terminal:
                raise ValidationError(f"Report {report_id} is {report.status.value} and cannot be reassigned")

            now = self.clock()
            already_assigned = {a.staff_id for a in report.assigned_staff}
            staff_entries = [
                {"staff_id": staff_id, "assigned_at": now, "assigned_by": assigned_by}
                for staff_id in dict.fromkeys(staff_ids)
                if staff_id not in already_assigned
            ]
            try:
                updated = self.store.update_report(
                    report_id,
                    expected={"status": data["status"]},
                    updates={
                        "assigned_department": {"code": department.code, "name": department.name},
                        "sla.expected_resolution_time": department.sla.resolution_time,
                        "updated_at": now,
                    },
                    appends={"assigned_staff": staff_entries} if staff_entries else None,
                )
            except ConflictError:
                logger.info(f"Assignment of {report_id} raced a status change, retrying")
                continue
            logger.info(f"Report {report_id} assigned to {department.code} by {assigned_by}")
            return Report.model_validate(updated)

        raise ConflictError(f"Report {report_id} kept changing during assignment; please retry")


# Global service instance (singleton pattern)
_department_service = None


def get_department_service() -> DepartmentService:
    """Get or create DepartmentService singleton."""
    global _department_service
    if _department_service is None:
        _department_service = DepartmentService()
    return _department_service
